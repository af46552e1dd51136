"""Tests for the task context retriever."""

import random

import pytest
from sqlalchemy.exc import OperationalError

from examprep.core.metrics import rag_degraded_total
from examprep.features.retrieval.service import (
    CONTEXT_HEADER,
    FEW_SHOT_HEADER,
    TaskContextRetriever,
)
from examprep.features.retrieval.store import SqlTaskStore, TaskStoreUnavailable
from examprep.models.task import PracticeTask


@pytest.fixture
def retriever(tasks_db_url):
    r = TaskContextRetriever.connect(tasks_db_url, rng=random.Random(7))
    yield r
    r.close()


@pytest.fixture
def degraded(tmp_path):
    return TaskContextRetriever.connect(f"sqlite:///{tmp_path / 'missing.db'}")


def test_extract_keywords_prefers_vocabulary():
    r = TaskContextRetriever(None)
    keywords = r.extract_keywords("Реши квадратное уравнение x^2+5x+6=0")
    assert keywords == ["уравнение", "квадратное"]


def test_extract_keywords_caps_at_five():
    r = TaskContextRetriever(None)
    query = "уравнение функция график синус косинус тангенс площадь"
    assert len(r.extract_keywords(query)) == 5


def test_extract_keywords_falls_back_to_plain_words():
    r = TaskContextRetriever(None)
    keywords = r.extract_keywords("Помоги, пожалуйста: как писать слово корова?")
    assert keywords == ["пожалуйста", "писать", "слово", "корова"]


def test_extract_keywords_empty_query():
    r = TaskContextRetriever(None)
    assert r.extract_keywords("") == []
    assert r.extract_keywords("   ") == []
    assert r.extract_keywords(None) == []


def test_quadratic_equation_query_finds_matching_task(retriever):
    found = retriever.search_by_keywords("Реши квадратное уравнение x^2+5x+6=0")
    assert found
    assert found[0].id == 1
    assert "квадратное уравнение" in found[0].explanation


def test_search_skips_tasks_without_explanation(retriever):
    found = retriever.search_by_keywords("уравнение", limit=10)
    assert 3 not in [task.id for task in found]


def test_search_ranks_by_matched_keywords(retriever):
    # task 1 matches two keywords, task 2 only one
    found = retriever.search_by_keywords("уравнение и процент, квадратное", limit=5)
    assert [task.id for task in found] == [1, 2]


def test_search_respects_limit(retriever):
    found = retriever.search_by_keywords("найти решение уравнение процент закон", limit=1)
    assert len(found) <= 1


def test_search_empty_query_returns_empty(retriever):
    assert retriever.search_by_keywords("") == []


def test_search_without_matches_returns_empty(retriever):
    assert retriever.search_by_keywords("синус") == []


def test_search_by_subject_and_topic_is_fuzzy(retriever):
    found = retriever.search_by_subject_and_topic("математ", "квадратн")
    assert [task.id for task in found] == [1]


def test_search_by_topic_without_subject_spans_all_subjects(retriever):
    assert [task.id for task in retriever.search_by_subject_and_topic("", "квадратн")] == [1]
    assert [task.id for task in retriever.search_by_subject_and_topic(None, "ньютон")] == [5]


def test_search_by_subject_and_topic_unresolved_returns_empty(retriever):
    assert retriever.search_by_subject_and_topic("Химия", "Квадратные уравнения") == []
    assert retriever.search_by_subject_and_topic("Математика", "Стереометрия") == []
    assert retriever.search_by_subject_and_topic("", "") == []


def test_format_for_prompt(retriever):
    text = retriever.format_for_prompt(retriever.search_by_keywords("квадратное уравнение"))
    assert CONTEXT_HEADER in text
    assert "Задание 1 (Математика, Квадратные уравнения):" in text
    assert "Вопрос: Решите уравнение x^2 - 5x + 6 = 0" in text
    assert "Решение: D = 25 - 24 = 1" in text
    assert "Правильный ответ: 2; 3" in text


def test_format_for_prompt_skips_empty_fields():
    task = PracticeTask(id=9, question_text="2+2?", explanation="Сложение")
    text = TaskContextRetriever(None).format_for_prompt([task])
    assert "Неизвестный предмет" in text
    assert "Решение:" not in text
    assert "Правильный ответ:" not in text


def test_format_for_prompt_empty_input():
    assert TaskContextRetriever(None).format_for_prompt([]) == ""


def test_few_shot_examples_are_tasks_with_explanations(retriever):
    examples = retriever.get_few_shot_examples(3)
    assert len(examples) == 3
    assert all(task.explanation for task in examples)
    assert len({task.id for task in examples}) == 3


def test_few_shot_block():
    task = PracticeTask(id=1, question_text="Q", explanation="A", correct_answer="42")
    text = TaskContextRetriever(None).format_few_shot_examples([task])
    assert FEW_SHOT_HEADER in text
    assert "Пример 1:" in text
    assert "Ответ: A" in text
    assert TaskContextRetriever(None).format_few_shot_examples([]) == ""


def test_context_for_query_with_matches_has_no_few_shot(retriever):
    context = retriever.get_context_for_query("квадратное уравнение")
    assert [task.id for task in context.tasks] == [1]
    assert CONTEXT_HEADER in context.text
    assert FEW_SHOT_HEADER not in context.text


def test_context_for_query_without_matches_uses_few_shot(retriever):
    context = retriever.get_context_for_query("синус")
    assert context.tasks == ()
    assert FEW_SHOT_HEADER in context.text


def test_context_for_query_few_shot_disabled(retriever):
    context = retriever.get_context_for_query("синус", include_few_shot=False)
    assert context.is_empty


def test_missing_store_degrades_silently(degraded, tmp_path):
    assert degraded.is_available is False
    assert not (tmp_path / "missing.db").exists()
    assert rag_degraded_total.value() == 1

    assert degraded.search_by_keywords("квадратное уравнение") == []
    assert degraded.search_by_subject_and_topic("Математика", "Проценты") == []
    assert degraded.get_few_shot_examples() == []
    assert degraded.format_for_prompt(degraded.search_by_keywords("уравнение")) == ""
    assert degraded.get_context_for_query("уравнение").is_empty


def test_store_without_schema_is_unavailable(tmp_path):
    path = tmp_path / "empty.db"
    path.touch()
    with pytest.raises(TaskStoreUnavailable):
        SqlTaskStore.connect(f"sqlite:///{path}")


def test_read_errors_after_startup_return_empty():
    class BrokenStore:
        def list_tasks(self, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    r = TaskContextRetriever(BrokenStore())
    assert r.search_by_keywords("уравнение") == []
    assert rag_degraded_total.value() == 1


def test_sql_store_reads(tasks_db_url):
    store = SqlTaskStore.connect(tasks_db_url)
    try:
        assert [s["name"] for s in store.list_subjects()] == ["Математика", "Русский язык", "Физика"]
        assert [t["id"] for t in store.list_topics(1)] == [10, 11]
        assert store.list_topics(99) == []
        assert [t.id for t in store.list_tasks_by_topic(10)] == [3, 1]
        assert [t.id for t in store.list_tasks_by_topic(10, with_explanation=True)] == [1]
        assert [t.id for t in store.list_tasks(subject_id=3)] == [5]
        assert [t.id for t in store.list_tasks(difficulty=1, limit=2)] == [2, 3]
        assert store.list_tasks(topic_id=999) == []
    finally:
        store.close()
