"""Main FastAPI application for the plan generation engine."""
from fastapi import FastAPI, Request

from plan_engine.api.deps import get_telemetry
from plan_engine.api.routes.estimates import router as estimates_router
from plan_engine.api.routes.plan_jobs import router as plan_jobs_router
from plan_engine.api.routes.plans import router as plans_router
from plan_engine.core.config import settings
from plan_engine.core.logging import configure_logging
from plan_engine.core.middleware import RequestIDMiddleware

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(plan_jobs_router)
app.include_router(plans_router)
app.include_router(estimates_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    get_telemetry()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with get_telemetry().trace("http.health_check", metadata={"route": "/health"}):
        return {"status": "ok", "request_id": request.state.request_id}
