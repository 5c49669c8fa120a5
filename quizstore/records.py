"""
Entity records and their mapping to store rows.

Each entity has an explicit ``*_to_row`` / ``*_from_row`` pair. The pairs are
total: every entity field maps to exactly one column and back, so
``x_from_row(x_to_row(record)) == record`` for every record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

QUESTIONS_TABLE = "questions"
USERS_TABLE = "users"
RESPONSES_TABLE = "responses"
QUIZ_MODE_TABLE = "quiz_mode"
TABLES = (QUESTIONS_TABLE, QUIZ_MODE_TABLE, USERS_TABLE, RESPONSES_TABLE)

QUIZ_MODE_ID = 1

# Entity field -> column, per table.
QUESTION_COLUMNS = {
    "id": "id",
    "order": "order_num",
    "text": "text",
    "images": "images",
    "options": "options",
    "correct_answer": "correct_answer",
    "show_correct_answer": "show_correct_answer",
    "is_active": "is_active",
    "is_deleted": "is_deleted",
    "created_at": "created_at",
    "updated_at": "updated_at",
}

USER_COLUMNS = {
    "id": "id",
    "name": "name",
    "is_deleted": "is_deleted",
    "created_at": "created_at",
}

RESPONSE_COLUMNS = {
    "user_id": "user_id",
    "question_id": "question_id",
    "selected_answer": "selected_answer",
    "is_correct": "is_correct",
    "answered_at": "answered_at",
}

QUIZ_MODE_COLUMNS = {
    "is_active": "is_active",
    "started_at": "started_at",
    "ended_at": "ended_at",
}

# Fields a caller may change through a sparse update.
QUESTION_UPDATABLE = frozenset(QUESTION_COLUMNS) - {"id", "created_at", "updated_at"}
USER_UPDATABLE = frozenset(USER_COLUMNS) - {"id", "created_at"}


@dataclass
class QuestionOption:
    text: str
    image: Optional[str] = None

    def as_dict(self) -> dict:
        return {"text": self.text, "image": self.image}

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionOption":
        return cls(text=data["text"], image=data.get("image"))


@dataclass
class Question:
    id: str
    order: int
    text: str
    images: List[str] = field(default_factory=list)
    options: List[QuestionOption] = field(default_factory=list)
    correct_answer: int = 0
    show_correct_answer: bool = False
    is_active: bool = False
    is_deleted: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0


@dataclass
class NewQuestion:
    """Payload for creating a question; the store assigns the rest."""

    order: int
    text: str
    options: List[QuestionOption]
    correct_answer: int
    images: List[str] = field(default_factory=list)
    show_correct_answer: bool = False
    is_active: bool = False


@dataclass
class QuizMode:
    is_active: bool = False
    started_at: Optional[float] = None
    ended_at: Optional[float] = None


@dataclass
class User:
    id: str
    name: str
    is_deleted: bool = False
    created_at: float = 0.0


@dataclass
class Response:
    user_id: str
    question_id: str
    selected_answer: int
    is_correct: bool
    answered_at: float


@dataclass
class UserStats:
    user_id: str
    user_name: str
    correct_count: int
    total_answered: int
    accuracy: int
    last_answered_at: Optional[float] = None


def _options_to_row(options: List[QuestionOption]) -> list[dict]:
    return [option.as_dict() for option in options]


def _options_from_row(raw: Optional[list]) -> List[QuestionOption]:
    return [QuestionOption.from_dict(item) for item in raw or []]


def question_to_row(question: Question) -> dict:
    return {
        "id": question.id,
        "order_num": question.order,
        "text": question.text,
        "images": list(question.images),
        "options": _options_to_row(question.options),
        "correct_answer": question.correct_answer,
        "show_correct_answer": question.show_correct_answer,
        "is_active": question.is_active,
        "is_deleted": question.is_deleted,
        "created_at": question.created_at,
        "updated_at": question.updated_at,
    }


def question_from_row(row: dict) -> Question:
    return Question(
        id=row["id"],
        order=row["order_num"],
        text=row["text"],
        images=list(row.get("images") or []),
        options=_options_from_row(row.get("options")),
        correct_answer=row["correct_answer"],
        show_correct_answer=row["show_correct_answer"],
        is_active=row["is_active"],
        is_deleted=row["is_deleted"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def question_changes_to_row(changes: dict[str, Any]) -> dict:
    """
    Translates a sparse question update into column values.

    Only the given fields are translated; unknown or read-only fields raise
    ``ValueError``.
    """
    unknown = set(changes) - QUESTION_UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update question fields: {sorted(unknown)}")
    row = {}
    for name, value in changes.items():
        if name == "options":
            value = _options_to_row(value)
        elif name == "images":
            value = list(value)
        row[QUESTION_COLUMNS[name]] = value
    return row


def user_to_row(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "is_deleted": user.is_deleted,
        "created_at": user.created_at,
    }


def user_from_row(row: dict) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        is_deleted=row["is_deleted"],
        created_at=row["created_at"],
    )


def user_changes_to_row(changes: dict[str, Any]) -> dict:
    unknown = set(changes) - USER_UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
    return {USER_COLUMNS[name]: value for name, value in changes.items()}


def response_to_row(response: Response) -> dict:
    return {
        "user_id": response.user_id,
        "question_id": response.question_id,
        "selected_answer": response.selected_answer,
        "is_correct": response.is_correct,
        "answered_at": response.answered_at,
    }


def response_from_row(row: dict) -> Response:
    return Response(
        user_id=row["user_id"],
        question_id=row["question_id"],
        selected_answer=row["selected_answer"],
        is_correct=row["is_correct"],
        answered_at=row["answered_at"],
    )


def quiz_mode_to_row(mode: QuizMode) -> dict:
    return {
        "id": QUIZ_MODE_ID,
        "is_active": mode.is_active,
        "started_at": mode.started_at,
        "ended_at": mode.ended_at,
    }


def quiz_mode_from_row(row: dict) -> QuizMode:
    return QuizMode(
        is_active=row["is_active"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
    )


def check_correct_answer(options: List[QuestionOption], correct_answer: int) -> bool:
    """True when ``correct_answer`` indexes into ``options``."""
    return 0 <= correct_answer < len(options)
