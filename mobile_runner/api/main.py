from __future__ import annotations

import logging
import os

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_settings
from ..errors import RunnerError
from ..job_store import init_job_store
from .routers import history, local, remote

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    level_name = (level or get_settings().logLevel or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # boto logs every request at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)


configure_logging()
init_job_store()

app = FastAPI(title="Mobile Test Runner", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("RUNNER_CORS_ORIGINS", "*").split(","),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RunnerError)
async def _runner_error(request: Request, exc: RunnerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages) or "Invalid request"})


@app.exception_handler(ClientError)
@app.exception_handler(BotoCoreError)
@app.exception_handler(httpx.HTTPError)
@app.exception_handler(OSError)
async def _upstream_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"[API] {request.method} {request.url.path} upstream error: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok", "version": __version__}


app.include_router(local.router)
app.include_router(history.router)
app.include_router(remote.router)


def run() -> None:
    import uvicorn

    uvicorn.run(
        "mobile_runner.api.main:app",
        host=os.getenv("RUNNER_HOST", "0.0.0.0"),
        port=int(os.getenv("RUNNER_PORT", "8001")),
    )
