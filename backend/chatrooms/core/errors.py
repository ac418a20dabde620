import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ChatError(Exception):
    """Base class for failures that are translated at the handler boundary.

    REST handlers turn these into ``{"error": message}`` responses; the live
    gateway turns them into an ``error`` event sent to the originating
    connection only.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailed(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(ChatError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ChatError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST


class InternalFailure(ChatError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatError)
    async def _chat_error_handler(_request: Request, exc: ChatError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
