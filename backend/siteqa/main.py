from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from siteqa.core.nonconformance.errors import WorkflowError
from siteqa.core.nonconformance.router import router as ncr_router
from siteqa.core.notifications.service import NotificationDispatcher, QueueNotifier, SqlNotificationSink
from siteqa.db.session import AsyncSessionLocal
from siteqa.logging_config import configure_logging, get_logger
from siteqa.settings import get_settings

settings = get_settings()
logger = get_logger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "wrong_state": 400,
    "forbidden": 403,
    "validation_failed": 422,
    "concurrent_modification": 409,
    "storage_error": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    notifier = QueueNotifier(maxsize=settings.NOTIFICATION_QUEUE_SIZE)
    dispatcher = NotificationDispatcher(notifier, SqlNotificationSink(AsyncSessionLocal))
    app.state.notifier = notifier
    dispatcher.start()
    logger.info("SiteQA API starting ({})", settings.APP_ENV)
    try:
        yield
    finally:
        await dispatcher.stop()


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, 400),
        content={"message": exc.message, "kind": exc.kind, **exc.detail},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="SiteQA NCR API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    app.include_router(ncr_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
