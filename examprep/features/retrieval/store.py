"""
examprep/features/retrieval/store.py

Read-only access to the practice task database.

Every read returns an empty list when nothing matches; absence is never an
error. Only opening the store can fail (TaskStoreUnavailable).
"""

import os
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from examprep.core.database import (
    build_engine,
    is_sqlite_url,
    sqlite_file_path,
    subjects,
    tasks,
    topics,
)
from examprep.models.task import PracticeTask


class TaskStoreUnavailable(RuntimeError):
    """Raised when the task database cannot be opened."""


class TaskStore(Protocol):
    def list_tasks(
        self,
        *,
        subject_id: Optional[int] = None,
        topic_id: Optional[int] = None,
        difficulty: Optional[int] = None,
        with_explanation: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PracticeTask]:
        ...

    def list_subjects(self) -> List[Dict[str, object]]:
        ...

    def list_topics(self, subject_id: int) -> List[Dict[str, object]]:
        ...

    def list_tasks_by_topic(
        self, topic_id: int, *, limit: int = 50, with_explanation: bool = False
    ) -> List[PracticeTask]:
        ...


def _task_query():
    return (
        select(
            tasks.c.id,
            tasks.c.question_text,
            tasks.c.correct_answer,
            tasks.c.explanation,
            tasks.c.solution_steps,
            tasks.c.difficulty_level,
            subjects.c.name.label("subject_name"),
            topics.c.name.label("topic_name"),
        )
        .select_from(
            tasks.outerjoin(subjects, tasks.c.subject_id == subjects.c.id)
            .outerjoin(topics, tasks.c.topic_id == topics.c.id)
        )
    )


def _with_explanation(query):
    return query.where(tasks.c.explanation.is_not(None)).where(tasks.c.explanation != "")


def _row_to_task(row) -> PracticeTask:
    return PracticeTask(
        id=row.id,
        subject_name=row.subject_name,
        topic_name=row.topic_name,
        question_text=row.question_text or "",
        correct_answer=row.correct_answer,
        explanation=row.explanation,
        solution_steps=row.solution_steps,
        difficulty=row.difficulty_level or 1,
    )


class SqlTaskStore:
    """TaskStore over the subjects/topics/tasks tables."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def connect(cls, url: str) -> "SqlTaskStore":
        """Open the store and make sure the tasks table is readable.

        Raises:
            TaskStoreUnavailable: missing file, unreachable server or no schema
        """
        if is_sqlite_url(url):
            path = sqlite_file_path(url)
            # SQLite would silently create an empty file
            if path and not os.path.exists(path):
                raise TaskStoreUnavailable(f"Task database not found: {path}")
        try:
            engine = build_engine(url)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1 FROM tasks LIMIT 1"))
        except SQLAlchemyError as exc:
            raise TaskStoreUnavailable(str(exc)) from exc
        return cls(engine)

    def close(self) -> None:
        self.engine.dispose()

    def list_tasks(
        self,
        *,
        subject_id: Optional[int] = None,
        topic_id: Optional[int] = None,
        difficulty: Optional[int] = None,
        with_explanation: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PracticeTask]:
        query = _task_query()
        if subject_id is not None:
            query = query.where(tasks.c.subject_id == subject_id)
        if topic_id is not None:
            query = query.where(tasks.c.topic_id == topic_id)
        if difficulty is not None:
            query = query.where(tasks.c.difficulty_level == difficulty)
        if with_explanation:
            query = _with_explanation(query)
        query = query.order_by(tasks.c.difficulty_level, tasks.c.id).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            return [_row_to_task(row) for row in conn.execute(query)]

    def list_subjects(self) -> List[Dict[str, object]]:
        query = select(subjects.c.id, subjects.c.name).order_by(subjects.c.id)
        with self.engine.connect() as conn:
            return [{"id": row.id, "name": row.name} for row in conn.execute(query)]

    def list_topics(self, subject_id: int) -> List[Dict[str, object]]:
        query = (
            select(topics.c.id, topics.c.name, topics.c.subject_id)
            .where(topics.c.subject_id == subject_id)
            .order_by(topics.c.order_index, topics.c.id)
        )
        with self.engine.connect() as conn:
            return [
                {"id": row.id, "name": row.name, "subject_id": row.subject_id}
                for row in conn.execute(query)
            ]

    def list_tasks_by_topic(
        self, topic_id: int, *, limit: int = 50, with_explanation: bool = False
    ) -> List[PracticeTask]:
        return self.list_tasks(topic_id=topic_id, with_explanation=with_explanation, limit=limit)
