"""Shared helpers for API routes (error handling and logging)."""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from library.errors import LibraryError

P = ParamSpec("P")
R = TypeVar("R")


class APIError(Exception):
    """Base class for API errors that includes an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    @classmethod
    def from_library_error(cls, exc: LibraryError) -> "APIError":
        return cls(exc.message, status_code=exc.status_code, payload=exc.payload)

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.message}
        data.update(self.payload)
        return data


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class MethodNotAllowedError(APIError):
    status_code = 405
    message = "Method not allowed"


def _resolve_user() -> str:
    owner_id = g.get("owner_id")
    return str(owner_id) if owner_id else "anonymous"


def _collect_request_context() -> dict[str, Any]:
    context: dict[str, Any] = {
        "route": request.path,
        "endpoint": request.endpoint,
        "method": request.method,
        "user": _resolve_user(),
        "view_args": dict(request.view_args or {}),
        "args": request.args.to_dict(flat=False),
    }

    if request.is_json:
        json_payload = request.get_json(silent=True)
        if json_payload is not None:
            context["json"] = json_payload

    return context


def _serialize_context(context: dict[str, Any]) -> str:
    try:
        return json.dumps(context, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(context)


def _log_api_error(exc: Exception, *, status_code: int, handled: bool) -> None:
    context = _collect_request_context()
    context["status_code"] = status_code
    context_str = _serialize_context(context)
    if handled and status_code < 500:
        current_app.logger.warning(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str
        )
        return
    if handled:
        current_app.logger.error(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str,
            exc_info=exc,
        )
        return
    current_app.logger.exception(
        "Unhandled API error (%s): %s | context=%s", status_code, exc, context_str
    )


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator that centralizes API error handling and logging."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except LibraryError as exc:
            api_error = APIError.from_library_error(exc)
            _log_api_error(exc, status_code=api_error.status_code, handled=True)
            return jsonify(api_error.to_dict()), api_error.status_code
        except APIError as exc:
            status_code = exc.status_code
            _log_api_error(exc, status_code=status_code, handled=True)
            return jsonify(exc.to_dict()), status_code
        except HTTPException as exc:
            status_code = exc.code or 500
            message = exc.description or str(exc)
            api_error = APIError(message=message, status_code=status_code)
            _log_api_error(exc, status_code=status_code, handled=True)
            return jsonify(api_error.to_dict()), status_code
        except Exception as exc:  # pragma: no cover
            _log_api_error(exc, status_code=500, handled=False)
            return jsonify({"error": "Internal server error"}), 500

    return wrapper


def register_api_error_handlers(flask_app: Flask) -> None:
    """Return JSON bodies for routing errors raised outside view functions."""

    def _http_error(exc: HTTPException):
        if not request.path.startswith("/api/"):
            return exc
        status_code = exc.code or 500
        if status_code == 405:
            body = MethodNotAllowedError().to_dict()
        else:
            body = {"error": exc.description or exc.name}
        return jsonify(body), status_code

    flask_app.register_error_handler(HTTPException, _http_error)


def json_body() -> dict[str, Any]:
    """Return the request JSON object or raise :class:`BadRequestError`."""

    data = request.get_json(silent=True)
    if data is None:
        raise BadRequestError("expected a JSON body")
    if not isinstance(data, dict):
        raise BadRequestError("expected a JSON object")
    return data


__all__ = [
    "APIError",
    "BadRequestError",
    "MethodNotAllowedError",
    "handle_api_errors",
    "json_body",
    "register_api_error_handlers",
]
