"""
FastAPI layer exposing RMBG inference.

Endpoints:
 - GET /health
 - POST /run
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from . import config
from .errors import (
    ErrorKind,
    InternalError,
    MalformedRequestBody,
    PipelineError,
    RmbgError,
    RouteNotFound,
)
from .model_loader import ModelProvider
from .pipeline import handle

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    base64: str


class RunResponse(BaseModel):
    base64: str
    process_time: int


class ErrorResponse(BaseModel):
    code: int
    message: str


def _error_response(exc: RmbgError, headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
    body = ErrorResponse(code=exc.status_code, message=str(exc))
    return JSONResponse(body.model_dump(), status_code=exc.status_code, headers=headers)


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return _error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "invalid request") if errors else "invalid request"
    logger.debug("Rejected request body on %s: %s", request.url.path, errors)
    return _error_response(MalformedRequestBody(f"Malformed request body: {detail}"))


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == ErrorKind.ROUTE_NOT_FOUND.status_code:
        return _error_response(
            RouteNotFound(f"Route not found: {request.method} {request.url.path}"),
            headers=exc.headers,
        )
    body = ErrorResponse(code=exc.status_code, message=str(exc.detail))
    return JSONResponse(body.model_dump(), status_code=exc.status_code, headers=exc.headers)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(InternalError("Internal server error"))


def get_model_provider(request: Request) -> ModelProvider:
    return request.app.state.model_provider


def create_app(
    settings: Optional[config.Settings] = None,
    provider: Optional[ModelProvider] = None,
) -> FastAPI:
    settings = settings or config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    provider = provider or ModelProvider.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.rmbg_preload:
            # A load failure here aborts startup; the service never runs without a model.
            logger.info("Preloading model from %s", settings.rmbg_model_path)
            provider.get()
        yield

    app = FastAPI(title="RMBG Background Removal Service", version="0.1.0", lifespan=lifespan)
    app.state.model_provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.add_exception_handler(PipelineError, _pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> PlainTextResponse:
        return PlainTextResponse("OK")

    # Plain `def`: FastAPI runs it in the threadpool so CPU-bound inference
    # never blocks the event loop.
    @app.post("/run", response_model=RunResponse)
    def run(body: RunRequest, request: Request) -> RunResponse:
        result = handle(body.base64, get_model_provider(request))
        return RunResponse(base64=result.base64, process_time=result.process_time)

    return app


app = create_app()


def main() -> None:
    settings = config.get_settings()
    logger.info("Serving on http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
