import functools
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Generic, ParamSpec, TypeVar

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger

T = TypeVar("T")
P = ParamSpec("P")

GENERIC_FAILURE_MESSAGE = "An unexpected error occurred."


class ResultStatus(IntEnum):
    """Outcome tags surfaced by every public service operation."""

    SUCCESS = status.HTTP_200_OK
    BAD_REQUEST = status.HTTP_400_BAD_REQUEST
    UNAUTHORIZED = status.HTTP_401_UNAUTHORIZED
    FORBIDDEN = status.HTTP_403_FORBIDDEN
    NOT_FOUND = status.HTTP_404_NOT_FOUND
    CONFLICT = status.HTTP_409_CONFLICT
    INTERNAL_SERVER_ERROR = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass(frozen=True, slots=True)
class ServiceResult(Generic[T]):
    """Tagged outcome of a business operation.

    Expected business conditions (validation, denial, missing records,
    conflicts) are reported through the status tag and never raised.
    """

    status: ResultStatus
    data: T | None = None
    error: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @classmethod
    def success(cls, data: T | None = None) -> "ServiceResult[T]":
        return cls(ResultStatus.SUCCESS, data=data)

    @classmethod
    def bad_request(cls, error: str) -> "ServiceResult[T]":
        return cls(ResultStatus.BAD_REQUEST, error=error)

    @classmethod
    def unauthorized(cls, error: str = "Authentication required") -> "ServiceResult[T]":
        return cls(ResultStatus.UNAUTHORIZED, error=error)

    @classmethod
    def forbidden(cls, error: str = "Insufficient permissions") -> "ServiceResult[T]":
        return cls(ResultStatus.FORBIDDEN, error=error)

    @classmethod
    def not_found(cls, error: str) -> "ServiceResult[T]":
        return cls(ResultStatus.NOT_FOUND, error=error)

    @classmethod
    def conflict(cls, error: str) -> "ServiceResult[T]":
        return cls(ResultStatus.CONFLICT, error=error)

    @classmethod
    def internal_error(cls, error: str = GENERIC_FAILURE_MESSAGE) -> "ServiceResult[T]":
        return cls(ResultStatus.INTERNAL_SERVER_ERROR, error=error)


def guarded(
    operation: str, *fields: str
) -> Callable[[Callable[P, Awaitable[ServiceResult[T]]]], Callable[P, Awaitable[ServiceResult[T]]]]:
    """Turns infrastructure failures of a service coroutine into an InternalServerError result.

    Only the argument names listed in ``fields`` are attached to the log
    record, so tokens and other secrets passed to the operation stay out of
    the logs.

    Args:
        operation: Human readable name of the operation for the log line.
        *fields: Names of identifier arguments to log on failure.
    """

    def decorator(func: Callable[P, Awaitable[ServiceResult[T]]]) -> Callable[P, Awaitable[ServiceResult[T]]]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> ServiceResult[T]:
            try:
                return await func(*args, **kwargs)
            except Exception:
                bound = signature.bind_partial(*args, **kwargs).arguments
                identifiers = {name: bound.get(name) for name in fields}
                logger.bind(operation=operation, **identifiers).exception(f"Operation '{operation}' failed")
                return ServiceResult.internal_error()

        return wrapper

    return decorator


def result_response(result: ServiceResult[Any]) -> JSONResponse:
    """Serializes a ServiceResult into the HTTP payload used by every router."""
    if result.is_success:
        return JSONResponse(status_code=int(result.status), content={"data": jsonable_encoder(result.data)})
    return JSONResponse(status_code=int(result.status), content={"error": result.error})
