import io
import unittest

from fastapi.testclient import TestClient
from PIL import Image

from quizstore.app import create_app
from quizstore.dependencies import (
    get_change_feed,
    get_db_client,
    get_media_store,
    reset_clients,
)
from quizstore.db import InMemoryDbClient
from quizstore.storage import InMemoryStorageClient


def _question_body(order=1, **overrides):
    body = {
        "order": order,
        "text": f"Question {order}",
        "options": [{"text": "A"}, {"text": "B", "image": None}],
        "correctAnswer": 1,
    }
    body.update(overrides)
    return body


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        reset_clients()
        self.addCleanup(reset_clients)
        self.client = TestClient(create_app())
        db = get_db_client()
        if isinstance(db, InMemoryDbClient):
            db.reset()

    def test_question_crud_uses_camel_case(self):
        created = self.client.post("/api/questions", json=_question_body(order=2))
        self.assertEqual(created.status_code, 201)
        payload = created.json()
        self.assertEqual(payload["correctAnswer"], 1)
        self.assertFalse(payload["isDeleted"])
        self.client.post("/api/questions", json=_question_body(order=1))

        listed = self.client.get("/api/questions").json()
        self.assertEqual([q["order"] for q in listed], [1, 2])

        patched = self.client.patch(
            f"/api/questions/{payload['id']}", json={"text": "Edited"}
        ).json()
        self.assertEqual(patched["text"], "Edited")
        self.assertEqual(patched["options"], payload["options"])
        self.assertEqual(patched["order"], 2)

        active = self.client.put(
            f"/api/questions/{payload['id']}/active", json={"isActive": True}
        )
        self.assertTrue(active.json()["isActive"])

        self.client.delete(f"/api/questions/{payload['id']}")
        self.assertEqual(len(self.client.get("/api/questions").json()), 1)
        self.assertEqual(self.client.get(f"/api/questions/{payload['id']}").status_code, 404)
        raw = self.client.get(
            f"/api/questions/{payload['id']}", params={"include_deleted": True}
        )
        self.assertTrue(raw.json()["isDeleted"])

    def test_invalid_correct_answer_is_rejected(self):
        response = self.client.post("/api/questions", json=_question_body(correctAnswer=9))
        self.assertEqual(response.status_code, 422)

    def test_unknown_question_update_is_404(self):
        response = self.client.patch("/api/questions/missing", json={"text": "x"})
        self.assertEqual(response.status_code, 404)

    def test_quiz_mode_lifecycle(self):
        initial = self.client.get("/api/quiz-mode").json()
        self.assertEqual(
            initial, {"isActive": False, "startedAt": None, "endedAt": None}
        )
        started = self.client.post("/api/quiz-mode/start").json()
        self.assertTrue(started["isActive"])
        ended = self.client.post("/api/quiz-mode/end").json()
        self.assertFalse(ended["isActive"])
        self.assertEqual(ended["startedAt"], started["startedAt"])
        self.assertIsNotNone(ended["endedAt"])

    def test_users_responses_and_stats(self):
        user = self.client.post("/api/users", json={"name": "Aiko"}).json()
        self.client.post("/api/users", json={"name": "Ben"})
        self.assertEqual(
            self.client.get("/api/users/by-name/Aiko").json()["id"], user["id"]
        )
        for question_id, selected in (("q1", 1), ("q2", 0), ("q3", 1)):
            saved = self.client.post(
                "/api/responses",
                json={
                    "userId": user["id"],
                    "questionId": question_id,
                    "selectedAnswer": selected,
                    "correctAnswer": 1,
                },
            )
            self.assertEqual(saved.status_code, 200)
        self.assertEqual(len(self.client.get(f"/api/users/{user['id']}/responses").json()), 3)

        stats = self.client.get("/api/stats").json()
        self.assertEqual([s["userName"] for s in stats], ["Aiko", "Ben"])
        self.assertEqual(stats[0]["accuracy"], 67)
        self.assertEqual(stats[1]["accuracy"], 0)
        self.assertIsNone(stats[1]["lastAnsweredAt"])

        self.client.delete(f"/api/users/{user['id']}")
        self.assertEqual(self.client.get("/api/users/by-name/Aiko").status_code, 404)

    def test_upload_and_delete_images(self):
        buffer = io.BytesIO()
        Image.new("RGB", (4, 4)).save(buffer, format="PNG")
        response = self.client.post(
            "/api/images",
            data={"path": "questions/q1/main"},
            files=[("files", ("a.png", buffer.getvalue(), "image/png"))],
        )
        self.assertEqual(response.status_code, 201)
        (url,) = response.json()["urls"]
        self.assertIn("/quiz-images/questions/q1/main/", url)

        storage = get_media_store().storage
        self.assertIsInstance(storage, InMemoryStorageClient)
        self.assertEqual(len(storage.stored_objects), 1)

        deleted = self.client.post("/api/images/delete", json={"urls": [url]})
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(storage.stored_objects, {})

    def test_rejected_upload_returns_user_message(self):
        response = self.client.post(
            "/api/images",
            data={"path": "questions/q1/main"},
            files=[("files", ("doc.pdf", b"%PDF-1.4", "application/pdf"))],
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "unsupported_type")

    def test_change_feed_shares_the_api_store(self):
        self.assertIs(get_change_feed().db, get_db_client())


if __name__ == "__main__":
    unittest.main()
