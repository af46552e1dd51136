"""AI tutor API.

All endpoints check the caller's entitlement before any retrieval or
provider work:
- POST /api/ai/chat: tutor chat with task context
- POST /api/ai/quick-solution: step-by-step solution for a text task
- POST /api/ai/explain-topic: topic explanation with example tasks
- POST /api/ai/quick-solution-image: solution for a photographed task
- POST /api/ai/study-plan: day-by-day preparation plan
- POST /api/ai/recommendations, /progress-analysis, /problem-areas: progress feedback
- POST /api/ai/motivation: short encouragement after an action

The feedback endpoints answer with a canned text when the provider cannot
be reached, see the *_FALLBACK constants.
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, field_validator
from starlette.concurrency import run_in_threadpool

from examprep.core.auth import get_current_user_id
from examprep.core.errors import AIProviderUnavailableError, AIRegionBlockedError, ValidationError
from examprep.core.logging import get_request_id
from examprep.api.deps import get_orchestrator, get_retriever
from examprep.features.ai import prompts
from examprep.features.ai.service import AIOrchestrator
from examprep.features.entitlements.service import require_capability
from examprep.features.retrieval.service import TaskContextRetriever
from examprep.features.subscriptions.service import get_subscription
from examprep.models.plan import Capability

router = APIRouter(prefix="/api/ai", tags=["ai"])

CHAT_MAX_TOKENS = 2000
SOLUTION_MAX_TOKENS = 2000
RELATED_TASKS_LIMIT = 3
MAX_IMAGE_BYTES = 10 * 1024 * 1024
STUDY_PLAN_MAX_TOKENS = 1500
RECOMMENDATIONS_MAX_TOKENS = 1000
PROGRESS_MAX_TOKENS = 1200
MOTIVATION_MAX_TOKENS = 300
PROBLEM_AREAS_MAX_TOKENS = 1000

STUDY_PLAN_FALLBACK = (
    "Рекомендуем распределить подготовку так: 3-4 дня в неделю по 45-60 минут, "
    "чередуя математику и русский язык. Часть времени тратьте на решение вариантов, "
    "часть - на разбор ошибок и повторение теории."
)
RECOMMENDATIONS_SHORT_FALLBACK = (
    "Рекомендуем регулярно решать задания по выбранным предметам ОГЭ, анализировать ошибки "
    "и повторять сложные темы. Составьте план подготовки и следуйте ему."
)
RECOMMENDATIONS_FALLBACK = """Рекомендации по подготовке к ОГЭ для {name}:

1. **Регулярная практика**: Решайте задания по выбранным предметам ежедневно, минимум 30-60 минут.

2. **Анализ ошибок**: Ведите дневник ошибок и регулярно повторяйте проблемные темы.

3. **План подготовки**: Составьте расписание занятий и следуйте ему. Разбейте подготовку на этапы.

4. **Пробные тесты**: Решайте варианты ОГЭ в условиях, максимально приближенных к экзамену.

5. **Повторение**: Регулярно повторяйте пройденный материал, особенно за месяц до экзамена.

6. **Отдых**: Не забывайте об отдыхе, переутомление снижает эффективность подготовки."""


def _not_blank(value: str, field: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()


class ChatRequest(BaseModel):
    message: str
    user_context: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_required(cls, value: str) -> str:
        return _not_blank(value, "message")


class SolutionRequest(BaseModel):
    task: str
    subject: Optional[str] = None

    @field_validator("task")
    @classmethod
    def task_required(cls, value: str) -> str:
        return _not_blank(value, "task")


class TopicRequest(BaseModel):
    topic: str
    subject: Optional[str] = None
    user_level: Optional[str] = None

    @field_validator("topic")
    @classmethod
    def topic_required(cls, value: str) -> str:
        return _not_blank(value, "topic")


class ImageSolutionRequest(BaseModel):
    image_base64: str
    mime_type: str = "image/png"


class StudentProfile(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    grade: Optional[int] = None


class StudyPlanRequest(BaseModel):
    exam_date: Optional[str] = None
    subjects: Optional[List[str]] = None
    target_grade: Optional[str] = None
    days_per_week: Optional[int] = None  # 1-7, anything else means 3
    progress: Optional[Any] = None
    student: Optional[StudentProfile] = None


class RecommendationsRequest(BaseModel):
    user_data: StudentProfile = StudentProfile()
    progress_data: Optional[Any] = None


class ProgressAnalysisRequest(BaseModel):
    subject: str
    progress_data: Optional[Any] = None

    @field_validator("subject")
    @classmethod
    def subject_required(cls, value: str) -> str:
        return _not_blank(value, "subject")


class MotivationRequest(BaseModel):
    action: str
    user_data: Optional[StudentProfile] = None
    performance: Optional[str] = None

    @field_validator("action")
    @classmethod
    def action_required(cls, value: str) -> str:
        return _not_blank(value, "action")


class ProblemAreasRequest(BaseModel):
    progress_data: Optional[Any] = None
    test_results: Optional[Any] = None


def _profile(profile: Optional[StudentProfile]) -> Optional[Dict[str, Any]]:
    return profile.model_dump(exclude_none=True) if profile is not None else None


def _rid(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or get_request_id()


async def _require(user_id: str, capability: Capability, subject: Optional[str] = None) -> None:
    subscription = await run_in_threadpool(get_subscription, user_id)
    require_capability(subscription, capability, subject)


@router.post("/chat")
async def chat_endpoint(
    body: ChatRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    retriever: TaskContextRetriever = Depends(get_retriever),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    context = await run_in_threadpool(retriever.get_context_for_query, body.message)
    messages = prompts.build_chat_messages(body.message, body.user_context, context.text)
    text = await orchestrator.call(messages, max_tokens=CHAT_MAX_TOKENS)
    return {"response": text, "context_tasks": len(context.tasks), "request_id": _rid(request)}


@router.post("/quick-solution")
async def quick_solution_endpoint(
    body: SolutionRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    retriever: TaskContextRetriever = Depends(get_retriever),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.TASKS, body.subject)
    related = await run_in_threadpool(retriever.search_by_keywords, body.task, RELATED_TASKS_LIMIT)
    messages = prompts.build_solution_messages(body.task, body.subject, retriever.format_for_prompt(related))
    text = await orchestrator.call(messages, max_tokens=SOLUTION_MAX_TOKENS)
    return {"solution": text, "request_id": _rid(request)}


@router.post("/explain-topic")
async def explain_topic_endpoint(
    body: TopicRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    retriever: TaskContextRetriever = Depends(get_retriever),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.TASKS, body.subject)
    related = await run_in_threadpool(
        retriever.search_by_subject_and_topic, body.subject or "", body.topic, RELATED_TASKS_LIMIT
    )
    messages = prompts.build_topic_messages(
        body.topic, body.subject, body.user_level, retriever.format_for_prompt(related)
    )
    text = await orchestrator.call(messages, max_tokens=SOLUTION_MAX_TOKENS)
    return {"explanation": text, "request_id": _rid(request)}


@router.post("/quick-solution-image")
async def quick_solution_image_endpoint(
    body: ImageSolutionRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    rid = _rid(request)
    if not body.mime_type.startswith("image/"):
        raise ValidationError("Можно загружать только изображения", request_id=rid)
    try:
        raw = base64.b64decode(body.image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Изображение не загружено", request_id=rid) from None
    if not raw:
        raise ValidationError("Изображение не загружено", request_id=rid)
    if len(raw) > MAX_IMAGE_BYTES:
        raise ValidationError("Изображение слишком большое (максимум 10 МБ)", request_id=rid)

    await _require(user_id, Capability.AI_CHAT)
    messages = prompts.build_image_messages(body.image_base64, body.mime_type)
    text = await orchestrator.call(messages, max_tokens=SOLUTION_MAX_TOKENS)
    return {"solution": text, "request_id": rid}


@router.post("/study-plan")
async def study_plan_endpoint(
    body: StudyPlanRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    messages = prompts.build_study_plan_messages(
        subjects=body.subjects,
        target_grade=body.target_grade,
        days_per_week=body.days_per_week,
        exam_date=body.exam_date,
        progress=body.progress,
        student=_profile(body.student),
    )
    try:
        text = await orchestrator.call(messages, max_tokens=STUDY_PLAN_MAX_TOKENS)
    except AIRegionBlockedError as exc:
        exc.details.setdefault("fallback_plan", STUDY_PLAN_FALLBACK)
        raise
    return {"plan": text, "request_id": _rid(request)}


@router.post("/recommendations")
async def recommendations_endpoint(
    body: RecommendationsRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    student = _profile(body.user_data)
    messages = prompts.build_recommendations_messages(student, body.progress_data)
    try:
        text = await orchestrator.call(messages, max_tokens=RECOMMENDATIONS_MAX_TOKENS)
    except AIRegionBlockedError as exc:
        exc.details.setdefault("recommendations", RECOMMENDATIONS_SHORT_FALLBACK)
        raise
    except AIProviderUnavailableError:
        # provider down or timed out
        name = (student or {}).get("first_name") or "ученика"
        return {
            "recommendations": RECOMMENDATIONS_FALLBACK.format(name=name),
            "fallback": True,
            "request_id": _rid(request),
        }
    return {"recommendations": text, "fallback": False, "request_id": _rid(request)}


@router.post("/progress-analysis")
async def progress_analysis_endpoint(
    body: ProgressAnalysisRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    messages = prompts.build_progress_analysis_messages(body.subject, body.progress_data)
    text = await orchestrator.call(messages, max_tokens=PROGRESS_MAX_TOKENS)
    return {"analysis": text, "request_id": _rid(request)}


@router.post("/motivation")
async def motivation_endpoint(
    body: MotivationRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    messages = prompts.build_motivation_messages(body.action, _profile(body.user_data), body.performance)
    text = await orchestrator.call(messages, max_tokens=MOTIVATION_MAX_TOKENS)
    return {"motivation": text, "request_id": _rid(request)}


@router.post("/problem-areas")
async def problem_areas_endpoint(
    body: ProblemAreasRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
):
    await _require(user_id, Capability.AI_CHAT)
    messages = prompts.build_problem_areas_messages(body.progress_data, body.test_results)
    text = await orchestrator.call(messages, max_tokens=PROBLEM_AREAS_MAX_TOKENS)
    return {"problem_areas": text, "request_id": _rid(request)}
