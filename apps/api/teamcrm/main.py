from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from teamcrm.api.errors import register_exception_handlers
from teamcrm.api.routes import router as api_router
from teamcrm.core.config import get_settings
from teamcrm.core.context import RequestContextMiddleware
from teamcrm.logging import configure_logging
from teamcrm.middleware.correlation_id import CorrelationIdMiddleware
from teamcrm.middleware.rate_limit import MutationRateLimitMiddleware
from teamcrm.middleware.request_logging import RequestLoggingMiddleware
from teamcrm.otel import server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("teamcrm.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.started")
    yield
    logger.info("app.stopped")


settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-correlation-id", "x-request-id"],
)
register_exception_handlers(app)
app.include_router(api_router)

setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
