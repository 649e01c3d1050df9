"""
Error handling utilities for consistent logging and JSON error responses.

Delivery routes answer expected request problems with fallback images; these
helpers cover the rest (generator failures, aborts raised by routes).
"""

import logging
import sys
from typing import Any

from flask import g, jsonify


def safe_log_error(
    logger: logging.Logger,
    message: str,
    exc_info: bool | BaseException | tuple | None = True,
    level: int = logging.ERROR,
    **extra_context: Any,
) -> None:
    """
    Log an error with structured context and exception information.

    Args:
        logger: The logger instance to use
        message: Human-readable error message
        exc_info: Exception info (True for current exception, exception object, or tuple)
        level: Log level (default: ERROR)
        **extra_context: Additional context fields to include in the log

    Example:
        try:
            dispatcher.generate_and_serve(outcome, serve)
        except GenerationFailure as e:
            safe_log_error(logger, "Variant generation failed", exc_info=e,
                           path_cache=e.path_cache)
    """
    context = {"error_context": extra_context, "has_exception": exc_info is not None}

    if exc_info:
        if isinstance(exc_info, BaseException):
            context["exception_type"] = type(exc_info).__name__
            context["exception_message"] = str(exc_info)
        elif exc_info is True:
            exc_type, exc_value, _ = sys.exc_info()
            if exc_type:
                context["exception_type"] = exc_type.__name__
                context["exception_message"] = str(exc_value)

    logger.log(level, message, exc_info=exc_info, extra=context)


def public_message_for(status_code: int) -> str:
    if status_code == 504:
        return "The media variant could not be generated in time."
    if status_code >= 500:
        return "An internal error occurred. Please try again later."
    if status_code == 412:
        return "The request is missing required parameters."
    if status_code == 403:
        return "Access to this media has expired or is not permitted."
    if status_code == 404:
        return "The requested media does not exist."
    if status_code >= 400:
        return "The request could not be completed."
    return "An error occurred."


def error_response(status_code: int, public_message: str | None = None):
    """Build the JSON error body used by every error handler.

    Returns:
        Tuple of (JSON response, status code)
    """
    payload = {
        "success": False,
        "error": public_message or public_message_for(status_code),
    }
    request_id = getattr(g, "request_id", None)
    if request_id:
        payload["request_id"] = request_id
    return jsonify(payload), status_code
