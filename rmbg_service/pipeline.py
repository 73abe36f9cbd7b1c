"""
Request pipeline for background removal.

`handle` is the single entry point used by the HTTP API:
envelope in -> decode -> model -> encode -> PNG envelope out.
Every failure leaves as a `PipelineError` so callers translate one type.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time

from . import codec
from .errors import ErrorKind, PipelineError, RmbgError
from .model_loader import ModelProvider

logger = logging.getLogger(__name__)


@dataclass
class ResponseEnvelope:
    base64: str
    process_time: int  # milliseconds


def handle(envelope: str, provider: ModelProvider) -> ResponseEnvelope:
    """
    Remove the background from one encoded image.

    Raises:
        PipelineError: carrying the kind of the stage that failed.
    """
    started = time.perf_counter()
    try:
        image = codec.decode(envelope)
        model = provider.get()
        result = model.infer(image)
        encoded = codec.encode(result)
    except RmbgError as exc:
        logger.info("Request failed (%s): %s", exc.kind.value, exc)
        raise PipelineError(exc.kind, str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure while processing image: %s", exc)
        raise PipelineError(ErrorKind.INTERNAL, "Internal server error") from exc

    process_time = int((time.perf_counter() - started) * 1000)
    logger.info("Processed %dx%d image in %d ms", image.width, image.height, process_time)
    return ResponseEnvelope(base64=str(encoded), process_time=process_time)
