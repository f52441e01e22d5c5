from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from feedback_engine.api.routes import jobs, processor, scheduler
from feedback_engine.config import get_settings
from feedback_engine.core.exceptions import global_exception_handler, http_exception_handler, job_error_handler, request_validation_exception_handler
from feedback_engine.core.lifespan import lifespan
from feedback_engine.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from feedback_engine.jobs.errors import JobError

settings = get_settings()

app = FastAPI(title="Feedback Engine", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url="/openapi.json" if settings.debug else None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(JobError, job_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
app.include_router(scheduler.router, prefix="/internal", tags=["internal"])
app.include_router(processor.router, prefix="/internal", tags=["internal"])
