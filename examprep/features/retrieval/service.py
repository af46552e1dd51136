"""
examprep/features/retrieval/service.py

Task Context Retriever: finds practice tasks relevant to a student's query
and renders them as a prompt block for the AI tutor.

Handles:
- Keyword extraction (domain vocabulary first, plain words as fallback)
- Keyword and subject/topic search over the task store
- Prompt blocks for relevant tasks and few-shot examples
- Degraded mode: without a store every search returns []
"""

import logging
import random
import re
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from examprep.core.config import settings
from examprep.core.metrics import rag_degraded_total
from examprep.features.retrieval.store import SqlTaskStore, TaskStore, TaskStoreUnavailable
from examprep.models.task import PracticeTask, RetrievedContext


logger = logging.getLogger("examprep")

MAX_KEYWORDS = 5
MIN_WORD_LENGTH = 4

MATH_KEYWORDS = (
    "уравнение", "квадратное", "линейное", "система", "неравенство",
    "функция", "график", "производная", "интеграл", "логарифм",
    "тригонометрия", "синус", "косинус", "тангенс", "геометрия",
    "треугольник", "круг", "площадь", "периметр", "объем",
    "алгебра", "арифметика", "дробь", "процент", "пропорция",
)

SUBJECT_KEYWORDS = (
    "математика", "русский", "физика", "химия", "биология",
    "история", "обществознание", "география", "информатика",
)

ACTION_KEYWORDS = (
    "решить", "найти", "вычислить", "определить", "доказать",
    "объяснить", "разобрать", "решение", "ответ",
)

STOP_WORDS = frozenset({
    "как", "что", "где", "когда", "почему", "для", "при", "на", "в", "с",
    "и", "или", "а", "но", "то", "это", "тебе", "мне", "помоги", "помочь",
    "объясни", "расскажи",
})

_EDGE_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$")

CONTEXT_HEADER = "=== Релевантные задания из базы ОГЭ ==="
CONTEXT_FOOTER = "=== Конец релевантных заданий ==="
CONTEXT_INSTRUCTION = (
    "Используй эти примеры для более точных и релевантных ответов. "
    "Если вопрос ученика похож на одно из заданий, используй похожий подход к объяснению."
)
FEW_SHOT_HEADER = "=== Примеры правильных ответов ==="
FEW_SHOT_FOOTER = "=== Конец примеров ==="
FEW_SHOT_INSTRUCTION = "Используй эти примеры как образец для структуры и стиля ответов."


class TaskContextRetriever:
    """Read-only RAG helper. `store=None` means permanently degraded."""

    def __init__(
        self,
        store: Optional[TaskStore],
        *,
        candidate_pool: Optional[int] = None,
        vocabulary: Optional[Sequence[str]] = None,
        stop_words: Optional[Iterable[str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.candidate_pool = candidate_pool or settings.RAG_CANDIDATE_POOL
        self.vocabulary = tuple(vocabulary) if vocabulary is not None else (
            MATH_KEYWORDS + SUBJECT_KEYWORDS + ACTION_KEYWORDS
        )
        self.stop_words = frozenset(stop_words) if stop_words is not None else STOP_WORDS
        self.rng = rng or random.Random()

    @classmethod
    def connect(cls, url: Optional[str] = None, **kwargs) -> "TaskContextRetriever":
        """Open the task store; on failure return a degraded retriever."""
        target = url or settings.TASKS_DATABASE_URL
        try:
            store = SqlTaskStore.connect(target)
        except (TaskStoreUnavailable, SQLAlchemyError) as exc:
            rag_degraded_total.inc()
            logger.warning(
                "[retrieval] task store unavailable, running without context",
                extra={"event_type": "rag_degraded", "error_code": type(exc).__name__},
            )
            return cls(None, **kwargs)
        logger.info("[retrieval] task store connected")
        return cls(store, **kwargs)

    @property
    def is_available(self) -> bool:
        return self.store is not None

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    def extract_keywords(self, query: Optional[str]) -> List[str]:
        lowered = (query or "").casefold()
        if not lowered.strip():
            return []

        found = [keyword for keyword in self.vocabulary if keyword in lowered]
        if found:
            return found[:MAX_KEYWORDS]

        words = []
        for raw in lowered.split():
            word = _EDGE_PUNCTUATION.sub("", raw)
            if len(word) < MIN_WORD_LENGTH or word in self.stop_words:
                continue
            words.append(word)
            if len(words) == MAX_KEYWORDS:
                break
        return words

    def search_by_keywords(self, query: Optional[str], limit: int = 5) -> List[PracticeTask]:
        """Tasks whose question or explanation mentions any extracted keyword.

        Ranked by the number of distinct keywords matched, then by difficulty
        and id.
        """
        if self.store is None or limit <= 0:
            return []
        keywords = self.extract_keywords(query)
        if not keywords:
            return []

        candidates = self._read(
            "list_tasks", with_explanation=True, limit=self.candidate_pool
        )
        scored = []
        for task in candidates:
            haystack = task.searchable_text
            hits = sum(1 for keyword in keywords if keyword in haystack)
            if hits:
                scored.append((-hits, task.difficulty, task.id, task))
        scored.sort(key=lambda item: item[:3])
        return [item[3] for item in scored[:limit]]

    def search_by_subject_and_topic(
        self, subject_name: Optional[str], topic_name: Optional[str], limit: int = 3
    ) -> List[PracticeTask]:
        if self.store is None or limit <= 0:
            return []
        subject_needle = (subject_name or "").strip().casefold()
        topic_needle = (topic_name or "").strip().casefold()
        if not topic_needle:
            return []

        # blank subject matches every subject
        subject_ids = [
            row["id"] for row in self._read("list_subjects")
            if subject_needle in str(row["name"]).casefold()
        ]
        topic_ids = []
        for subject_id in subject_ids:
            topic_ids.extend(
                row["id"] for row in self._read("list_topics", subject_id)
                if topic_needle in str(row["name"]).casefold()
            )

        found: List[PracticeTask] = []
        for topic_id in topic_ids:
            found.extend(
                self._read("list_tasks_by_topic", topic_id, limit=limit, with_explanation=True)
            )
        found.sort(key=lambda task: (task.difficulty, task.id))
        return found[:limit]

    def get_few_shot_examples(self, limit: int = 3) -> List[PracticeTask]:
        if self.store is None or limit <= 0:
            return []
        pool = self._read("list_tasks", with_explanation=True, limit=self.candidate_pool)
        if len(pool) <= limit:
            return list(pool)
        return self.rng.sample(pool, limit)

    def format_for_prompt(self, tasks: Sequence[PracticeTask]) -> str:
        if not tasks:
            return ""

        lines = ["", "", CONTEXT_HEADER]
        for index, task in enumerate(tasks, start=1):
            where = task.subject_name or "Неизвестный предмет"
            if task.topic_name:
                where = f"{where}, {task.topic_name}"
            lines.append("")
            lines.append(f"Задание {index} ({where}):")
            lines.append(f"Вопрос: {task.question_text}")
            if task.explanation:
                lines.append(f"Объяснение: {task.explanation}")
            if task.solution_steps:
                lines.append(f"Решение: {task.solution_steps}")
            if task.correct_answer:
                lines.append(f"Правильный ответ: {task.correct_answer}")
        lines.append("")
        lines.append(CONTEXT_FOOTER)
        lines.append(CONTEXT_INSTRUCTION)
        return "\n".join(lines) + "\n"

    def format_few_shot_examples(self, tasks: Sequence[PracticeTask]) -> str:
        if not tasks:
            return ""

        lines = ["", "", FEW_SHOT_HEADER]
        for index, task in enumerate(tasks, start=1):
            lines.append("")
            lines.append(f"Пример {index}:")
            lines.append(f"Вопрос: {task.question_text}")
            lines.append(f"Ответ: {task.explanation or ''}")
            if task.solution_steps:
                lines.append(f"Решение: {task.solution_steps}")
            if task.correct_answer:
                lines.append(f"Правильный ответ: {task.correct_answer}")
        lines.append("")
        lines.append(FEW_SHOT_FOOTER)
        lines.append(FEW_SHOT_INSTRUCTION)
        return "\n".join(lines) + "\n"

    def get_context_for_query(
        self, query: Optional[str], *, include_few_shot: bool = True, max_tasks: int = 5
    ) -> RetrievedContext:
        """Relevant tasks for a chat message; few-shot examples only when none match."""
        found = self.search_by_keywords(query, max_tasks)
        text = self.format_for_prompt(found)
        if include_few_shot and not found:
            text += self.format_few_shot_examples(self.get_few_shot_examples(3))
        return RetrievedContext(tasks=tuple(found), text=text)

    def _read(self, method: str, *args, **kwargs) -> list:
        # Read errors after startup degrade the single call, not the retriever
        try:
            return list(getattr(self.store, method)(*args, **kwargs))
        except SQLAlchemyError:
            rag_degraded_total.inc()
            logger.warning(
                "[retrieval] task store read failed",
                exc_info=True,
                extra={"event_type": "rag_read_failed", "error_code": method},
            )
            return []
