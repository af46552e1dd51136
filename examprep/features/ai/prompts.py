"""
examprep/features/ai/prompts.py

System prompts and message builders for the tutor endpoints.

Retrieved context arrives as an already formatted block (possibly empty)
and is appended to the system prompt under its own heading.
"""

import json
from typing import Any, List, Mapping, Optional, Sequence

from examprep.models.ai import ChatMessage

CHAT_SYSTEM_PROMPT = """Ты - умный помощник для подготовки к ОГЭ 9 класса.
Ты помогаешь ученикам 9 класса с математикой, русским языком и другими предметами ОГЭ.

**Твоя роль:**
- Объясняй темы простым и понятным языком для ученика 9 класса
- Давай подробные пошаговые решения задач
- Мотивируй и поддерживай ученика
- Используй примеры из реальных заданий ОГЭ
- Отвечай ТОЛЬКО на русском языке

**Стиль ответов:**
- Будь дружелюбным и терпеливым
- Используй математические формулы и термины правильно
- Структурируй ответы: объяснение → решение → ответ
- Добавляй практические советы и подсказки

**Важно:**
- Если вопрос похож на задание из контекста, используй похожий подход
- Всегда проверяй правильность математических вычислений
- Объясняй каждый шаг решения подробно"""

SOLUTION_SYSTEM_PROMPT = """Ты - эксперт по решению задач по {subject}.
Дай подробное пошаговое решение задачи с объяснением каждого шага.
В конце дай краткий ответ.
Используй правильные математические формулы и термины."""

TOPIC_SYSTEM_PROMPT = """Ты - опытный преподаватель {subject}.
Объясни тему "{topic}" простым и понятным языком, подходящим для ученика {level} класса.
Включи примеры и практические задания из реальных заданий ОГЭ."""

IMAGE_SYSTEM_PROMPT = """Ты - эксперт по решению задач по математике, физике, химии, русскому языку и другим предметам.
Проанализируй изображение с задачей и дай подробное пошаговое решение с объяснением каждого шага.
В конце дай краткий ответ."""

IMAGE_USER_PROMPT = "Реши задачу с изображения. Дай подробное пошаговое решение."

STUDY_PLAN_SYSTEM_PROMPT = """Ты - опытный методист по подготовке к ОГЭ 9 класса.
Твоя задача - составить понятный, реалистичный и мотивирующий план подготовки к ОГЭ на ближайшие 1–2 недели.

Требования к ответу:
- Пиши ТОЛЬКО на русском языке.
- Структурируй план по дням недели (День 1, День 2, ...).
- Для каждого дня укажи: предмет(ы), конкретные темы/типы заданий ОГЭ и примерное время.
- Учитывай уровень ученика (класс 9, цель по оценке, текущий прогресс, выбранные предметы).
- Форматируй текст в виде коротких абзацев и списков, без JSON и без кода."""

RECOMMENDATIONS_SYSTEM_PROMPT = """Ты - эксперт по анализу учебного прогресса.
Проанализируй данные ученика и дай персональные рекомендации по улучшению подготовки к ЕГЭ/ОГЭ.
Учитывай слабые и сильные стороны, предлагай конкретные действия."""

PROGRESS_SYSTEM_PROMPT = """Ты - эксперт по анализу учебного прогресса по {subject}.
Проанализируй данные и дай детальную оценку прогресса с конкретными рекомендациями."""

MOTIVATION_SYSTEM_PROMPT = """Ты - мотивационный тренер для учеников.
Создай мотивирующее сообщение для ученика, который {action}.
Будь позитивным, используй юмор и похвалу.
Сообщение должно быть коротким (2-3 предложения)."""

PROBLEM_AREAS_SYSTEM_PROMPT = """Ты - эксперт по диагностике проблемных областей в учебе.
Проанализируй данные и определи основные проблемные темы и задания для ученика.
Дай конкретные рекомендации по их устранению."""

DEFAULT_SUBJECT = "ОГЭ"
DEFAULT_LEVEL = "9"
DEFAULT_PLAN_SUBJECTS = ("Математика", "Русский язык")
DEFAULT_TARGET_GRADE = "4"
DEFAULT_DAYS_PER_WEEK = 3


def _with_context(prompt: str, heading: str, rag_context: Optional[str]) -> str:
    if not rag_context:
        return prompt
    return f"{prompt}\n\n**{heading}:**{rag_context}"


def build_chat_messages(
    message: str, user_context: Optional[str] = None, rag_context: Optional[str] = None
) -> List[ChatMessage]:
    system = _with_context(CHAT_SYSTEM_PROMPT, "Контекст из базы заданий ОГЭ", rag_context)
    question = f"Вопрос: {message}"
    if user_context:
        question = f"Контекст ученика: {user_context}\n\n{question}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


def build_solution_messages(
    task: str, subject: Optional[str] = None, rag_context: Optional[str] = None
) -> List[ChatMessage]:
    system = SOLUTION_SYSTEM_PROMPT.format(subject=subject or DEFAULT_SUBJECT)
    system = _with_context(system, "Похожие задания из базы ОГЭ", rag_context)
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Реши задачу: {task}"},
    ]


def build_topic_messages(
    topic: str,
    subject: Optional[str] = None,
    user_level: Optional[str] = None,
    rag_context: Optional[str] = None,
) -> List[ChatMessage]:
    system = TOPIC_SYSTEM_PROMPT.format(
        subject=subject or DEFAULT_SUBJECT, topic=topic, level=user_level or DEFAULT_LEVEL
    )
    system = _with_context(system, "Примеры заданий по этой теме", rag_context)
    request = f"Объясни тему: {topic}"
    if subject:
        request = f"{request} ({subject})"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": request},
    ]


def build_image_messages(image_base64: str, mime_type: str) -> List[ChatMessage]:
    return [
        {"role": "system", "content": IMAGE_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": IMAGE_USER_PROMPT},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}},
            ],
        },
    ]


def _as_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _student_name(student: Optional[Mapping[str, Any]]) -> str:
    student = student or {}
    name = " ".join(str(student[key]) for key in ("first_name", "last_name") if student.get(key))
    return name or "ученик"


def build_study_plan_messages(
    *,
    subjects: Optional[Sequence[str]] = None,
    target_grade: Optional[str] = None,
    days_per_week: Optional[int] = None,
    exam_date: Optional[str] = None,
    progress: Any = None,
    student: Optional[Mapping[str, Any]] = None,
) -> List[ChatMessage]:
    """Out-of-range inputs fall back to the defaults instead of failing."""
    subjects = [s for s in (subjects or ()) if s and str(s).strip()] or list(DEFAULT_PLAN_SUBJECTS)
    if not isinstance(days_per_week, int) or isinstance(days_per_week, bool) or not 0 < days_per_week <= 7:
        days_per_week = DEFAULT_DAYS_PER_WEEK

    lines = []
    if student:
        lines.append(
            f"Ученик: {_student_name(student)}, класс: {student.get('grade') or DEFAULT_LEVEL}, "
            f"возраст: {student.get('age') or 'не указан'}"
        )
    lines.append(f"Цель по оценке: {target_grade or DEFAULT_TARGET_GRADE}")
    lines.append(f"Предметы для подготовки: {', '.join(subjects)}")
    lines.append(f"Количество дней в неделю для занятий: {days_per_week}")
    if exam_date:
        lines.append(f"Ориентировочная дата экзамена: {exam_date}")
    if progress:
        lines.append(f"Текущий прогресс (черновые данные): {_as_json(progress)}")

    request = "Составь план подготовки к ОГЭ на 1-2 недели по дням на основе этих данных:\n\n"
    return [
        {"role": "system", "content": STUDY_PLAN_SYSTEM_PROMPT},
        {"role": "user", "content": request + "\n".join(lines)},
    ]


def build_recommendations_messages(
    student: Optional[Mapping[str, Any]], progress_data: Any = None
) -> List[ChatMessage]:
    student = student or {}
    about = _student_name(student)
    if student.get("age"):
        about = f"{about}, {student['age']} лет"
    about = f"{about}, {student.get('grade') or DEFAULT_LEVEL} класс"
    return [
        {"role": "system", "content": RECOMMENDATIONS_SYSTEM_PROMPT},
        {"role": "user", "content": f"Ученик: {about}\nПрогресс: {_as_json(progress_data)}"},
    ]


def build_progress_analysis_messages(subject: str, progress_data: Any = None) -> List[ChatMessage]:
    return [
        {"role": "system", "content": PROGRESS_SYSTEM_PROMPT.format(subject=subject)},
        {"role": "user", "content": f"Данные прогресса по {subject}: {_as_json(progress_data)}"},
    ]


def build_motivation_messages(
    action: str, student: Optional[Mapping[str, Any]] = None, performance: Optional[str] = None
) -> List[ChatMessage]:
    lines = [f"Ученик: {_student_name(student)}", f"Действие: {action}"]
    if performance:
        lines.append(f"Результат: {performance}")
    return [
        {"role": "system", "content": MOTIVATION_SYSTEM_PROMPT.format(action=action)},
        {"role": "user", "content": "\n".join(lines)},
    ]


def build_problem_areas_messages(progress_data: Any = None, test_results: Any = None) -> List[ChatMessage]:
    return [
        {"role": "system", "content": PROBLEM_AREAS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Данные прогресса: {_as_json(progress_data)}\nРезультаты тестов: {_as_json(test_results)}",
        },
    ]
