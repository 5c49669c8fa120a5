"""
Database abstraction for the quiz tables and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from quizstore.errors import InvalidRecordError, RecordNotFoundError, StoreError
from quizstore.records import (
    QUESTIONS_TABLE,
    QUIZ_MODE_ID,
    QUIZ_MODE_TABLE,
    RESPONSES_TABLE,
    USERS_TABLE,
    NewQuestion,
    Question,
    QuizMode,
    Response,
    User,
    check_correct_answer,
    question_changes_to_row,
    question_from_row,
    question_to_row,
    quiz_mode_from_row,
    quiz_mode_to_row,
    response_from_row,
    response_to_row,
    user_changes_to_row,
    user_from_row,
    user_to_row,
)

if TYPE_CHECKING:
    from quizstore.realtime import ChangeTransport

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for the quiz record store."""

    # Questions
    def create_question(self, question: NewQuestion) -> Question:
        ...

    def list_questions(self) -> List[Question]:
        ...

    def get_question_by_id(
        self, question_id: str, include_deleted: bool = False
    ) -> Optional[Question]:
        ...

    def update_question(self, question_id: str, **changes) -> Question:
        ...

    def soft_delete_question(self, question_id: str) -> Question:
        ...

    def toggle_question_active(self, question_id: str, is_active: bool) -> Question:
        ...

    # Quiz mode
    def get_quiz_mode(self) -> QuizMode:
        ...

    def set_quiz_mode(self, mode: QuizMode) -> QuizMode:
        ...

    def start_quiz(self) -> QuizMode:
        ...

    def end_quiz(self) -> QuizMode:
        ...

    # Users
    def create_user(self, name: str) -> User:
        ...

    def list_users(self) -> List[User]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        ...

    def get_user_by_name(self, name: str) -> Optional[User]:
        ...

    def update_user(self, user_id: str, **changes) -> User:
        ...

    def soft_delete_user(self, user_id: str) -> User:
        ...

    # Responses
    def save_response(
        self,
        user_id: str,
        question_id: str,
        selected_answer: int,
        correct_answer: int,
    ) -> Response:
        ...

    def list_responses_for_user(self, user_id: str) -> List[Response]:
        ...

    def list_responses_by_question(self, user_id: str) -> Dict[str, Response]:
        ...

    def list_all_responses(self) -> List[Response]:
        ...


def _check_question(options, correct_answer: int) -> None:
    if not check_correct_answer(options, correct_answer):
        raise InvalidRecordError(
            f"correct_answer {correct_answer} is not a valid index into "
            f"{len(options)} options"
        )


class _NotifyingClient:
    """Shared notification plumbing for the client implementations."""

    notifier: Optional["ChangeTransport"] = None

    def _notify(self, table: str, event: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(table, event)
        except Exception:
            # The write is already committed; subscribers will catch up on the
            # next notification.
            logger.exception("Failed to publish %s change on %s", event, table)

    # Convenience aliases shared by both backends.
    def soft_delete_question(self, question_id: str) -> Question:
        return self.update_question(question_id, is_deleted=True)

    def toggle_question_active(self, question_id: str, is_active: bool) -> Question:
        return self.update_question(question_id, is_active=is_active)

    def soft_delete_user(self, user_id: str) -> User:
        return self.update_user(user_id, is_deleted=True)

    def start_quiz(self) -> QuizMode:
        return self.set_quiz_mode(
            QuizMode(is_active=True, started_at=self.clock(), ended_at=None)
        )

    def end_quiz(self) -> QuizMode:
        current = self.get_quiz_mode()
        return self.set_quiz_mode(
            QuizMode(
                is_active=False,
                started_at=current.started_at,
                ended_at=self.clock(),
            )
        )

    def list_responses_by_question(self, user_id: str) -> Dict[str, Response]:
        return {r.question_id: r for r in self.list_responses_for_user(user_id)}


class InMemoryDbClient(_NotifyingClient):
    """Simple in-memory database for development and tests."""

    def __init__(
        self,
        notifier: Optional["ChangeTransport"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.notifier = notifier
        self.clock = clock
        self._lock = threading.RLock()
        self.questions: Dict[str, dict] = {}
        self.users: Dict[str, dict] = {}
        self.responses: Dict[tuple[str, str], dict] = {}
        self.quiz_mode_rows: Dict[int, dict] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.questions.clear()
            self.users.clear()
            self.responses.clear()
            self.quiz_mode_rows.clear()

    def create_question(self, question: NewQuestion) -> Question:
        _check_question(question.options, question.correct_answer)
        now = self.clock()
        record = Question(
            id=uuid.uuid4().hex,
            order=question.order,
            text=question.text,
            images=list(question.images),
            options=copy.deepcopy(question.options),
            correct_answer=question.correct_answer,
            show_correct_answer=question.show_correct_answer,
            is_active=question.is_active,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.questions[record.id] = question_to_row(record)
        self._notify(QUESTIONS_TABLE, "insert")
        return record

    def list_questions(self) -> List[Question]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self.questions.values()]
        rows = [r for r in rows if not r["is_deleted"]]
        rows.sort(key=lambda r: r["order_num"])
        return [question_from_row(r) for r in rows]

    def get_question_by_id(
        self, question_id: str, include_deleted: bool = False
    ) -> Optional[Question]:
        with self._lock:
            row = copy.deepcopy(self.questions.get(question_id))
        if row is None or (row["is_deleted"] and not include_deleted):
            return None
        return question_from_row(row)

    def update_question(self, question_id: str, **changes) -> Question:
        updates = question_changes_to_row(changes)
        with self._lock:
            row = self.questions.get(question_id)
            if row is None:
                raise RecordNotFoundError(QUESTIONS_TABLE, question_id)
            merged = {**row, **copy.deepcopy(updates), "updated_at": self.clock()}
            record = question_from_row(merged)
            _check_question(record.options, record.correct_answer)
            self.questions[question_id] = merged
        self._notify(QUESTIONS_TABLE, "update")
        return question_from_row(copy.deepcopy(merged))

    def get_quiz_mode(self) -> QuizMode:
        with self._lock:
            row = self.quiz_mode_rows.get(QUIZ_MODE_ID)
            created = row is None
            if created:
                row = quiz_mode_to_row(QuizMode())
                self.quiz_mode_rows[QUIZ_MODE_ID] = row
            mode = quiz_mode_from_row(dict(row))
        if created:
            self._notify(QUIZ_MODE_TABLE, "insert")
        return mode

    def set_quiz_mode(self, mode: QuizMode) -> QuizMode:
        with self._lock:
            self.quiz_mode_rows[QUIZ_MODE_ID] = quiz_mode_to_row(mode)
        self._notify(QUIZ_MODE_TABLE, "upsert")
        return QuizMode(mode.is_active, mode.started_at, mode.ended_at)

    def create_user(self, name: str) -> User:
        record = User(
            id=uuid.uuid4().hex, name=name, is_deleted=False, created_at=self.clock()
        )
        with self._lock:
            self.users[record.id] = user_to_row(record)
        self._notify(USERS_TABLE, "insert")
        return record

    def list_users(self) -> List[User]:
        with self._lock:
            rows = [dict(r) for r in self.users.values()]
        rows = [r for r in rows if not r["is_deleted"]]
        rows.sort(key=lambda r: r["created_at"])
        return [user_from_row(r) for r in rows]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            row = self.users.get(user_id)
            row = dict(row) if row else None
        if row is None or row["is_deleted"]:
            return None
        return user_from_row(row)

    def get_user_by_name(self, name: str) -> Optional[User]:
        for user in self.list_users():
            if user.name == name:
                return user
        return None

    def update_user(self, user_id: str, **changes) -> User:
        updates = user_changes_to_row(changes)
        with self._lock:
            row = self.users.get(user_id)
            if row is None:
                raise RecordNotFoundError(USERS_TABLE, user_id)
            row.update(updates)
            record = user_from_row(dict(row))
        self._notify(USERS_TABLE, "update")
        return record

    def save_response(
        self,
        user_id: str,
        question_id: str,
        selected_answer: int,
        correct_answer: int,
    ) -> Response:
        record = Response(
            user_id=user_id,
            question_id=question_id,
            selected_answer=selected_answer,
            is_correct=selected_answer == correct_answer,
            answered_at=self.clock(),
        )
        with self._lock:
            self.responses[(user_id, question_id)] = response_to_row(record)
        self._notify(RESPONSES_TABLE, "upsert")
        return record

    def list_responses_for_user(self, user_id: str) -> List[Response]:
        return [r for r in self.list_all_responses() if r.user_id == user_id]

    def list_all_responses(self) -> List[Response]:
        with self._lock:
            rows = [dict(r) for r in self.responses.values()]
        rows.sort(key=lambda r: r["answered_at"])
        return [response_from_row(r) for r in rows]


Base = declarative_base()


class QuestionRow(Base):
    __tablename__ = QUESTIONS_TABLE

    id = Column(String, primary_key=True)
    order_num = Column(Integer, nullable=False, index=True)
    text = Column(Text, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    options = Column(JSON, nullable=False, default=list)
    correct_answer = Column(Integer, nullable=False)
    show_correct_answer = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = USERS_TABLE

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(Float, nullable=False)


class ResponseRow(Base):
    __tablename__ = RESPONSES_TABLE

    user_id = Column(String, primary_key=True)
    question_id = Column(String, primary_key=True)
    selected_answer = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    answered_at = Column(Float, nullable=False, index=True)


class QuizModeRow(Base):
    __tablename__ = QUIZ_MODE_TABLE

    id = Column(Integer, primary_key=True)
    is_active = Column(Boolean, nullable=False, default=False)
    started_at = Column(Float, nullable=True)
    ended_at = Column(Float, nullable=True)


# Dialects with an atomic INSERT ... ON CONFLICT.
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _as_row(obj) -> dict:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


class SqlDbClient(_NotifyingClient):
    """
    SQLAlchemy-backed implementation. Accepts a Postgres URL in production or
    SQLite for tests.
    """

    def __init__(
        self,
        database_url: str,
        notifier: Optional["ChangeTransport"] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not database_url:
            raise ValueError("database_url is required for SqlDbClient")
        self.notifier = notifier
        self.clock = clock
        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty db.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self._insert = _UPSERT_INSERTS.get(self.engine.dialect.name)
        if self._insert is None:
            raise ValueError(
                f"Unsupported database dialect: {self.engine.dialect.name}"
            )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self):
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def create_question(self, question: NewQuestion) -> Question:
        _check_question(question.options, question.correct_answer)
        now = self.clock()
        record = Question(
            id=uuid.uuid4().hex,
            order=question.order,
            text=question.text,
            images=list(question.images),
            options=list(question.options),
            correct_answer=question.correct_answer,
            show_correct_answer=question.show_correct_answer,
            is_active=question.is_active,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            row = QuestionRow(**question_to_row(record))
            session.add(row)
            session.commit()
            session.refresh(row)
            created = question_from_row(_as_row(row))
        self._notify(QUESTIONS_TABLE, "insert")
        return created

    def list_questions(self) -> List[Question]:
        with self._session() as session:
            stmt = (
                select(QuestionRow)
                .where(QuestionRow.is_deleted.is_(False))
                .order_by(QuestionRow.order_num.asc(), QuestionRow.created_at.asc())
            )
            rows = session.execute(stmt).scalars().all()
            return [question_from_row(_as_row(row)) for row in rows]

    def get_question_by_id(
        self, question_id: str, include_deleted: bool = False
    ) -> Optional[Question]:
        with self._session() as session:
            row = session.get(QuestionRow, question_id)
            if not row or (row.is_deleted and not include_deleted):
                return None
            return question_from_row(_as_row(row))

    def update_question(self, question_id: str, **changes) -> Question:
        updates = question_changes_to_row(changes)
        with self._session() as session:
            row = session.get(QuestionRow, question_id)
            if not row:
                raise RecordNotFoundError(QUESTIONS_TABLE, question_id)
            merged = question_from_row({**_as_row(row), **updates})
            _check_question(merged.options, merged.correct_answer)
            for column, value in updates.items():
                setattr(row, column, value)
            row.updated_at = self.clock()
            session.commit()
            updated = question_from_row(_as_row(row))
        self._notify(QUESTIONS_TABLE, "update")
        return updated

    def get_quiz_mode(self) -> QuizMode:
        with self._session() as session:
            row = session.get(QuizModeRow, QUIZ_MODE_ID)
            inserted = False
            if not row:
                # Concurrent first readers race here; the conflict clause
                # makes the losing insert a no-op.
                stmt = (
                    self._insert(QuizModeRow)
                    .values(**quiz_mode_to_row(QuizMode()))
                    .on_conflict_do_nothing(index_elements=[QuizModeRow.id])
                )
                inserted = session.execute(stmt).rowcount == 1
                session.commit()
                row = session.get(QuizModeRow, QUIZ_MODE_ID)
            mode = quiz_mode_from_row(_as_row(row))
        if inserted:
            self._notify(QUIZ_MODE_TABLE, "insert")
        return mode

    def set_quiz_mode(self, mode: QuizMode) -> QuizMode:
        values = quiz_mode_to_row(mode)
        stmt = self._insert(QuizModeRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuizModeRow.id],
            set_={
                "is_active": stmt.excluded.is_active,
                "started_at": stmt.excluded.started_at,
                "ended_at": stmt.excluded.ended_at,
            },
        )
        with self._session() as session:
            session.execute(stmt)
            session.commit()
        self._notify(QUIZ_MODE_TABLE, "upsert")
        return quiz_mode_from_row(values)

    def create_user(self, name: str) -> User:
        record = User(
            id=uuid.uuid4().hex, name=name, is_deleted=False, created_at=self.clock()
        )
        with self._session() as session:
            row = UserRow(**user_to_row(record))
            session.add(row)
            session.commit()
            session.refresh(row)
            created = user_from_row(_as_row(row))
        self._notify(USERS_TABLE, "insert")
        return created

    def list_users(self) -> List[User]:
        with self._session() as session:
            stmt = (
                select(UserRow)
                .where(UserRow.is_deleted.is_(False))
                .order_by(UserRow.created_at.asc())
            )
            return [user_from_row(_as_row(row)) for row in session.execute(stmt).scalars()]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if not row or row.is_deleted:
                return None
            return user_from_row(_as_row(row))

    def get_user_by_name(self, name: str) -> Optional[User]:
        with self._session() as session:
            stmt = (
                select(UserRow)
                .where(UserRow.name == name, UserRow.is_deleted.is_(False))
                .order_by(UserRow.created_at.asc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return user_from_row(_as_row(row)) if row else None

    def update_user(self, user_id: str, **changes) -> User:
        updates = user_changes_to_row(changes)
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise RecordNotFoundError(USERS_TABLE, user_id)
            for column, value in updates.items():
                setattr(row, column, value)
            session.commit()
            updated = user_from_row(_as_row(row))
        self._notify(USERS_TABLE, "update")
        return updated

    def save_response(
        self,
        user_id: str,
        question_id: str,
        selected_answer: int,
        correct_answer: int,
    ) -> Response:
        record = Response(
            user_id=user_id,
            question_id=question_id,
            selected_answer=selected_answer,
            is_correct=selected_answer == correct_answer,
            answered_at=self.clock(),
        )
        stmt = self._insert(ResponseRow).values(**response_to_row(record))
        stmt = stmt.on_conflict_do_update(
            index_elements=[ResponseRow.user_id, ResponseRow.question_id],
            set_={
                "selected_answer": stmt.excluded.selected_answer,
                "is_correct": stmt.excluded.is_correct,
                "answered_at": stmt.excluded.answered_at,
            },
        )
        with self._session() as session:
            session.execute(stmt)
            session.commit()
        self._notify(RESPONSES_TABLE, "upsert")
        return record

    def list_responses_for_user(self, user_id: str) -> List[Response]:
        with self._session() as session:
            stmt = (
                select(ResponseRow)
                .where(ResponseRow.user_id == user_id)
                .order_by(ResponseRow.answered_at.asc())
            )
            return [
                response_from_row(_as_row(row)) for row in session.execute(stmt).scalars()
            ]

    def list_all_responses(self) -> List[Response]:
        with self._session() as session:
            stmt = select(ResponseRow).order_by(ResponseRow.answered_at.asc())
            return [
                response_from_row(_as_row(row)) for row in session.execute(stmt).scalars()
            ]
