"""Request-scoped access to the collaborators built at startup."""

from fastapi import Request

from examprep.features.ai.service import AIOrchestrator
from examprep.features.retrieval.service import TaskContextRetriever


def get_retriever(request: Request) -> TaskContextRetriever:
    retriever = getattr(request.app.state, "retriever", None)
    if retriever is None:
        # Lifespan did not run (e.g. bare ASGI transport): no context
        retriever = TaskContextRetriever(None)
        request.app.state.retriever = retriever
    return retriever


def get_orchestrator(request: Request) -> AIOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = AIOrchestrator()
        request.app.state.orchestrator = orchestrator
    return orchestrator
