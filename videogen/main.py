import os
import time
import logging
import uvicorn
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth_middleware import SessionAuthMiddleware
from . import metrics
from .pipeline.errors import PipelineError
from .pipeline.routes import (
    audio_router,
    images_router,
    project_router,
    script_router,
    video_router,
)

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("VideoGen API starting up...")
    metrics.mark_started()
    yield
    logger.info("VideoGen API shutting down...")


app = FastAPI(title="VideoGen API", lifespan=lifespan)
app.add_middleware(SessionAuthMiddleware)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    metrics.record_request(route_key(request), (time.perf_counter() - started) * 1000)
    return response


# ── Error rendering: every failure is {"error": "<message>"} ─────────────────

def route_key(request: Request) -> str:
    """Route template for metrics; raw paths would create a key per project id."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _caller_id(request: Request) -> str:
    caller = getattr(request.state, "caller", None)
    return caller.user_id if caller else ""


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    metrics.record_error(
        route_key(request), type(exc).__name__, exc.message, _caller_id(request),
        vendor=getattr(exc, "vendor", ""),
    )
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    metrics.record_error(route_key(request), "ValidationError", message, _caller_id(request))
    return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    metrics.record_error(route_key(request), type(exc).__name__, str(exc), _caller_id(request))
    return JSONResponse({"error": "Internal server error"}, status_code=500)


app.include_router(script_router)
app.include_router(audio_router)
app.include_router(images_router)
app.include_router(video_router)
app.include_router(project_router)


@app.get("/health")
def health_check():
    """Verify the API is running and vendor credentials are configured."""
    return {
        "status": "ok",
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL")),
        "gemini_api_key_set": bool(os.environ.get("GEMINI_API_KEY")),
        "elevenlabs_api_key_set": bool(os.environ.get("ELEVENLABS_API_KEY")),
        "fal_api_key_set": bool(os.environ.get("FAL_API_KEY")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all API metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("videogen.main:app", host="0.0.0.0", port=port, reload=True)
