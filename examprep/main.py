import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(os.path.dirname(package_dir), ".env"))

from examprep.core.config import settings, validate_config  # noqa: E402
from examprep.core.database import create_all_tables, init_engine  # noqa: E402
from examprep.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from examprep.core.logging import configure_logging  # noqa: E402
from examprep.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from examprep.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from examprep.core.validation import validate_env  # noqa: E402
from examprep.api import ai, health, subscription  # noqa: E402
from examprep.features.ai.service import AIOrchestrator, worst_case_call_seconds  # noqa: E402
from examprep.features.retrieval.service import TaskContextRetriever  # noqa: E402

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("examprep")
    logger.info("Starting exam-prep backend...")
    app.state.startup_time = time.time()

    init_engine()
    create_all_tables()
    app.state.retriever = TaskContextRetriever.connect(settings.TASKS_DATABASE_URL)
    app.state.orchestrator = AIOrchestrator()
    logger.info(
        "AI pipeline ready",
        extra={"provider": settings.AI_PROVIDER, "event_type": "startup"},
    )
    logger.debug(f"AI call worst case: {worst_case_call_seconds():.0f}s")
    try:
        yield
    finally:
        await app.state.orchestrator.aclose()
        app.state.retriever.close()
        logger.info("Stopping exam-prep backend...")


app = FastAPI(title="ExamPrep - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ai.router)
app.include_router(subscription.router)
app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("examprep.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
