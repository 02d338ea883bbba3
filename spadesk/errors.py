from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class SpadeskError(Exception):
    """Base for every error a handler reports to the caller.

    ``status_code`` is the HTTP status rendered by ``install_error_handlers``
    and ``code`` is the machine-readable error name in the response body.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationRequiredError(SpadeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_required"


class AuthorizationDeniedError(SpadeskError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "authorization_denied"


class NotFoundError(SpadeskError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConflictError(SpadeskError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidStateError(SpadeskError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_state"


class InvalidInputError(SpadeskError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class NotificationError(SpadeskError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "notification_failed"


class InternalError(SpadeskError):
    pass


def error_body(exc: SpadeskError) -> dict:
    return {"message": exc.message, "error": exc.code}


async def spadesk_error_handler(request: Request, exc: SpadeskError) -> JSONResponse:
    headers = None
    if isinstance(exc, AuthenticationRequiredError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Invalid request payload",
            "error": InvalidInputError.code,
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SpadeskError, spadesk_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
