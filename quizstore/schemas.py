"""
Pydantic schemas for the HTTP API. Wire names are camelCase.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_record(cls, record):
        return cls.model_validate(asdict(record))


class QuestionOptionSchema(CamelModel):
    text: str
    image: Optional[str] = None


class QuestionSchema(CamelModel):
    id: str
    order: int
    text: str
    images: List[str]
    options: List[QuestionOptionSchema]
    correct_answer: int
    show_correct_answer: bool
    is_active: bool
    is_deleted: bool
    created_at: float
    updated_at: float


class CreateQuestionRequest(CamelModel):
    order: int
    text: str = Field(..., min_length=1)
    images: List[str] = Field(default_factory=list)
    options: List[QuestionOptionSchema]
    correct_answer: int
    show_correct_answer: bool = False
    is_active: bool = False


class UpdateQuestionRequest(CamelModel):
    order: Optional[int] = None
    text: Optional[str] = None
    images: Optional[List[str]] = None
    options: Optional[List[QuestionOptionSchema]] = None
    correct_answer: Optional[int] = None
    show_correct_answer: Optional[bool] = None
    is_active: Optional[bool] = None
    is_deleted: Optional[bool] = None


class ToggleActiveRequest(CamelModel):
    is_active: bool


class QuizModeSchema(CamelModel):
    is_active: bool
    started_at: Optional[float] = None
    ended_at: Optional[float] = None


class UserSchema(CamelModel):
    id: str
    name: str
    is_deleted: bool
    created_at: float


class CreateUserRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)


class ResponseSchema(CamelModel):
    user_id: str
    question_id: str
    selected_answer: int
    is_correct: bool
    answered_at: float


class SaveResponseRequest(CamelModel):
    user_id: str
    question_id: str
    selected_answer: int
    correct_answer: int


class UserStatsSchema(CamelModel):
    user_id: str
    user_name: str
    correct_count: int
    total_answered: int
    accuracy: int
    last_answered_at: Optional[float] = None


class ImageUrlsResponse(CamelModel):
    urls: List[str]


class DeleteImagesRequest(CamelModel):
    urls: List[str] = Field(..., min_length=1)
