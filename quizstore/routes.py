"""
HTTP routes for the quiz data-access API.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from quizstore.db import DbClient
from quizstore.dependencies import get_db_client, get_media_store
from quizstore.files import ImageFile
from quizstore.media import MediaStore
from quizstore.records import NewQuestion, QuestionOption, QuizMode
from quizstore.schemas import (
    CreateQuestionRequest,
    CreateUserRequest,
    DeleteImagesRequest,
    ImageUrlsResponse,
    QuestionSchema,
    QuizModeSchema,
    ResponseSchema,
    SaveResponseRequest,
    ToggleActiveRequest,
    UpdateQuestionRequest,
    UserSchema,
    UserStatsSchema,
)
from quizstore.stats import get_user_stats

logger = logging.getLogger(__name__)

router = APIRouter()


def _options(raw) -> list[QuestionOption]:
    return [QuestionOption(text=o.text, image=o.image) for o in raw]


@router.get("/questions", response_model=List[QuestionSchema])
def list_questions(db: DbClient = Depends(get_db_client)):
    return [QuestionSchema.from_record(q) for q in db.list_questions()]


@router.post("/questions", response_model=QuestionSchema, status_code=201)
def create_question(
    payload: CreateQuestionRequest, db: DbClient = Depends(get_db_client)
):
    question = db.create_question(
        NewQuestion(
            order=payload.order,
            text=payload.text,
            images=payload.images,
            options=_options(payload.options),
            correct_answer=payload.correct_answer,
            show_correct_answer=payload.show_correct_answer,
            is_active=payload.is_active,
        )
    )
    return QuestionSchema.from_record(question)


@router.get("/questions/{question_id}", response_model=QuestionSchema)
def get_question(
    question_id: str,
    include_deleted: bool = False,
    db: DbClient = Depends(get_db_client),
):
    question = db.get_question_by_id(question_id, include_deleted=include_deleted)
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")
    return QuestionSchema.from_record(question)


@router.patch("/questions/{question_id}", response_model=QuestionSchema)
def update_question(
    question_id: str,
    payload: UpdateQuestionRequest,
    db: DbClient = Depends(get_db_client),
):
    """Sparse update: only the fields present in the body change."""
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "options" in changes:
        changes["options"] = _options(payload.options)
    return QuestionSchema.from_record(db.update_question(question_id, **changes))


@router.delete("/questions/{question_id}", response_model=QuestionSchema)
def delete_question(question_id: str, db: DbClient = Depends(get_db_client)):
    return QuestionSchema.from_record(db.soft_delete_question(question_id))


@router.put("/questions/{question_id}/active", response_model=QuestionSchema)
def toggle_question_active(
    question_id: str,
    payload: ToggleActiveRequest,
    db: DbClient = Depends(get_db_client),
):
    question = db.toggle_question_active(question_id, payload.is_active)
    return QuestionSchema.from_record(question)


@router.get("/quiz-mode", response_model=QuizModeSchema)
def get_quiz_mode(db: DbClient = Depends(get_db_client)):
    return QuizModeSchema.from_record(db.get_quiz_mode())


@router.put("/quiz-mode", response_model=QuizModeSchema)
def set_quiz_mode(payload: QuizModeSchema, db: DbClient = Depends(get_db_client)):
    mode = QuizMode(
        is_active=payload.is_active,
        started_at=payload.started_at,
        ended_at=payload.ended_at,
    )
    return QuizModeSchema.from_record(db.set_quiz_mode(mode))


@router.post("/quiz-mode/start", response_model=QuizModeSchema)
def start_quiz(db: DbClient = Depends(get_db_client)):
    return QuizModeSchema.from_record(db.start_quiz())


@router.post("/quiz-mode/end", response_model=QuizModeSchema)
def end_quiz(db: DbClient = Depends(get_db_client)):
    return QuizModeSchema.from_record(db.end_quiz())


@router.get("/users", response_model=List[UserSchema])
def list_users(db: DbClient = Depends(get_db_client)):
    return [UserSchema.from_record(u) for u in db.list_users()]


@router.post("/users", response_model=UserSchema, status_code=201)
def create_user(payload: CreateUserRequest, db: DbClient = Depends(get_db_client)):
    return UserSchema.from_record(db.create_user(payload.name))


@router.get("/users/by-name/{name}", response_model=UserSchema)
def get_user_by_name(name: str, db: DbClient = Depends(get_db_client)):
    user = db.get_user_by_name(name)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserSchema.from_record(user)


@router.get("/users/{user_id}", response_model=UserSchema)
def get_user(user_id: str, db: DbClient = Depends(get_db_client)):
    user = db.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserSchema.from_record(user)


@router.delete("/users/{user_id}", response_model=UserSchema)
def delete_user(user_id: str, db: DbClient = Depends(get_db_client)):
    return UserSchema.from_record(db.soft_delete_user(user_id))


@router.get("/users/{user_id}/responses", response_model=List[ResponseSchema])
def list_user_responses(user_id: str, db: DbClient = Depends(get_db_client)):
    return [ResponseSchema.from_record(r) for r in db.list_responses_for_user(user_id)]


@router.post("/responses", response_model=ResponseSchema)
def save_response(payload: SaveResponseRequest, db: DbClient = Depends(get_db_client)):
    response = db.save_response(
        payload.user_id,
        payload.question_id,
        payload.selected_answer,
        payload.correct_answer,
    )
    return ResponseSchema.from_record(response)


@router.get("/responses", response_model=List[ResponseSchema])
def list_responses(db: DbClient = Depends(get_db_client)):
    return [ResponseSchema.from_record(r) for r in db.list_all_responses()]


@router.get("/stats", response_model=List[UserStatsSchema])
def user_stats(db: DbClient = Depends(get_db_client)):
    return [UserStatsSchema.from_record(s) for s in get_user_stats(db)]


@router.post("/images", response_model=ImageUrlsResponse, status_code=201)
async def upload_images(
    files: List[UploadFile] = File(...),
    path: str = Form(...),
    media: MediaStore = Depends(get_media_store),
):
    images = []
    for upload in files:
        data = await upload.read()
        images.append(
            ImageFile(
                name=upload.filename or "image",
                mime_type=upload.content_type or "application/octet-stream",
                data=data,
                declared_size=upload.size,
            )
        )
    urls = await run_in_threadpool(media.upload_many, images, path)
    logger.info("Uploaded %d images under %s", len(urls), path)
    return ImageUrlsResponse(urls=urls)


@router.post("/images/delete", status_code=204)
def delete_images(
    payload: DeleteImagesRequest, media: MediaStore = Depends(get_media_store)
):
    media.delete_many(payload.urls)
