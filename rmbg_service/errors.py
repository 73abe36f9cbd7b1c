"""
Error taxonomy for the background-removal service.

Every failure the service can surface carries an `ErrorKind`; the HTTP layer
only needs the kind to pick a status code.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MALFORMED_ENVELOPE = "malformed_envelope"
    UNSUPPORTED_FORMAT = "unsupported_format"
    BASE64_DECODE = "base64_decode"
    IMAGE_DECODE = "image_decode"
    IMAGE_ENCODE = "image_encode"
    MODEL_LOAD = "model_load"
    INFERENCE = "inference"
    MALFORMED_REQUEST_BODY = "malformed_request_body"
    ROUTE_NOT_FOUND = "route_not_found"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.MALFORMED_ENVELOPE: 400,
    ErrorKind.UNSUPPORTED_FORMAT: 400,
    ErrorKind.BASE64_DECODE: 400,
    ErrorKind.IMAGE_DECODE: 400,
    ErrorKind.MALFORMED_REQUEST_BODY: 400,
    ErrorKind.ROUTE_NOT_FOUND: 404,
    ErrorKind.IMAGE_ENCODE: 500,
    ErrorKind.MODEL_LOAD: 500,
    ErrorKind.INFERENCE: 500,
    ErrorKind.INTERNAL: 500,
}


class RmbgError(Exception):
    """Base error type; subclasses pin down the `kind`."""

    kind: ErrorKind = ErrorKind.INTERNAL

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class MalformedEnvelope(RmbgError):
    """Raised when the `;base64,` delimiter is missing."""

    kind = ErrorKind.MALFORMED_ENVELOPE


class UnsupportedFormat(RmbgError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class Base64DecodeError(RmbgError):
    kind = ErrorKind.BASE64_DECODE


class ImageDecodeError(RmbgError):
    kind = ErrorKind.IMAGE_DECODE


class ImageEncodeError(RmbgError):
    kind = ErrorKind.IMAGE_ENCODE


class ModelLoadError(RmbgError):
    """Raised when the model artifact is missing, unreadable or invalid."""

    kind = ErrorKind.MODEL_LOAD


class InferenceError(RmbgError):
    kind = ErrorKind.INFERENCE


class MalformedRequestBody(RmbgError):
    kind = ErrorKind.MALFORMED_REQUEST_BODY


class RouteNotFound(RmbgError):
    kind = ErrorKind.ROUTE_NOT_FOUND


class InternalError(RmbgError):
    kind = ErrorKind.INTERNAL


class PipelineError(RmbgError):
    """
    Uniform error raised by the request pipeline.

    Wraps whichever stage failed so callers see a single exception type
    carrying the kind and a client-safe message.
    """

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
