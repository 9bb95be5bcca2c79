import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.routing import APIRoute
from prometheus_client import make_asgi_app
from starlette.middleware.base import BaseHTTPMiddleware

from .api.deps import ServiceContainer, build_container
from .api.main import api_router
from .core.config import Settings, settings
from .core.observability import get_logger, set_correlation_id, setup_structured_logging

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Correlation id propagation and request logging."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_seconds=time.perf_counter() - start_time,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise

        response.headers["X-Correlation-ID"] = correlation_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=time.perf_counter() - start_time,
        )
        return response


def custom_generate_unique_id(route: APIRoute) -> str:
    return f"{route.tags[0]}-{route.name}"


def create_app(
    app_settings: Settings | None = None, container: ServiceContainer | None = None
) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting application",
            project=app_settings.PROJECT_NAME,
            environment=app_settings.ENVIRONMENT,
        )
        yield
        logger.info("Application shutdown")

    setup_structured_logging()
    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        openapi_url=f"{app_settings.API_V1_STR}/openapi.json",
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )
    app.state.container = container or build_container(app_settings)
    app.add_middleware(ObservabilityMiddleware)
    app.include_router(api_router, prefix=app_settings.API_V1_STR)
    app.mount("/metrics", make_asgi_app())
    return app


app = create_app()
