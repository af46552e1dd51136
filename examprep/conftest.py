# examprep/conftest.py
import os

import pytest
from sqlalchemy import insert

os.environ.setdefault("ENV", "test")

from examprep.core.database import (  # noqa: E402
    build_engine,
    create_all_tables,
    get_engine,
    init_engine,
    subjects,
    tasks,
    tasks_metadata,
    topics,
)
from examprep.core.metrics import METRICS  # noqa: E402


SEED_SUBJECTS = [
    {"id": 1, "name": "Математика"},
    {"id": 2, "name": "Русский язык"},
    {"id": 3, "name": "Физика"},
]

SEED_TOPICS = [
    {"id": 10, "subject_id": 1, "name": "Квадратные уравнения", "order_index": 1},
    {"id": 11, "subject_id": 1, "name": "Проценты", "order_index": 2},
    {"id": 20, "subject_id": 2, "name": "Орфография", "order_index": 1},
    {"id": 30, "subject_id": 3, "name": "Законы Ньютона", "order_index": 1},
]

SEED_TASKS = [
    {
        "id": 1, "subject_id": 1, "topic_id": 10, "difficulty_level": 2,
        "question_text": "Решите уравнение x^2 - 5x + 6 = 0",
        "correct_answer": "2; 3",
        "explanation": "Это квадратное уравнение, найдём корни через дискриминант.",
        "solution_steps": "D = 25 - 24 = 1; x = (5 ± 1) / 2",
    },
    {
        "id": 2, "subject_id": 1, "topic_id": 11, "difficulty_level": 1,
        "question_text": "Найдите 20% от числа 150",
        "correct_answer": "30",
        "explanation": "Процент переводим в дробь: 0,2 * 150.",
        "solution_steps": None,
    },
    {
        "id": 3, "subject_id": 1, "topic_id": 10, "difficulty_level": 1,
        "question_text": "Сколько корней имеет уравнение x^2 + 1 = 0?",
        "correct_answer": "0",
        "explanation": None,
        "solution_steps": None,
    },
    {
        "id": 4, "subject_id": 2, "topic_id": 20, "difficulty_level": 1,
        "question_text": "Вставьте пропущенную букву: к..рова",
        "correct_answer": "о",
        "explanation": "Словарное слово, проверить нельзя.",
        "solution_steps": None,
    },
    {
        "id": 5, "subject_id": 3, "topic_id": 30, "difficulty_level": 3,
        "question_text": "Тело массой 2 кг движется с ускорением 3 м/с². Найдите силу.",
        "correct_answer": "6 Н",
        "explanation": "Второй закон Ньютона: F = m * a.",
        "solution_steps": "F = 2 * 3 = 6",
    },
]


@pytest.fixture(autouse=True)
def app_db(tmp_path):
    """Fresh subscription database per test."""
    init_engine(f"sqlite:///{tmp_path / 'app.db'}")
    create_all_tables()
    yield
    get_engine().dispose()


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def tasks_db_url(tmp_path):
    """SQLite task catalog seeded with a few OGE tasks."""
    url = f"sqlite:///{tmp_path / 'tasks.db'}"
    engine = build_engine(url)
    tasks_metadata.create_all(bind=engine)
    with engine.begin() as conn:
        conn.execute(insert(subjects), SEED_SUBJECTS)
        conn.execute(insert(topics), SEED_TOPICS)
        conn.execute(insert(tasks), SEED_TASKS)
    engine.dispose()
    return url
