# app/core/exceptions.py
"""Domain errors and their HTTP translation"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map to an HTTP status"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(AppError):
    status_code = 400


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConfigurationError(AppError):
    """Missing or unusable configuration (OAuth apps, tenant mappings)"""
    status_code = 400


class CalendarNotConnectedError(AppError):
    status_code = 404


class CalendarAuthError(AppError):
    """Provider credentials were rejected; the user must reconnect"""
    status_code = 401


class CalendarProviderError(AppError):
    """The provider API failed or timed out"""
    status_code = 503


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
