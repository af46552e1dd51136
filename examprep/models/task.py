"""
examprep/models/task.py

Practice tasks as seen by the retriever (read-only copies of task store rows).
"""

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


class PracticeTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    subject_name: Optional[str] = None
    topic_name: Optional[str] = None
    question_text: str
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    solution_steps: Optional[str] = None
    difficulty: int = 1

    @property
    def searchable_text(self) -> str:
        return f"{self.question_text} {self.explanation or ''}".casefold()


class RetrievedContext(BaseModel):
    """Tasks selected for one query plus the block injected into the prompt."""
    model_config = ConfigDict(frozen=True)

    tasks: Tuple[PracticeTask, ...] = ()
    text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text
