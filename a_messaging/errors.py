# a_messaging/errors.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Generic, Optional, TypeVar

from google.api_core.exceptions import NotFound

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChatError(Exception):
    """Base class for every error the chat core reports to its callers."""


class AuthenticationRequired(ChatError):
    def __init__(self, message: str = "No signed-in user."):
        super().__init__(message)


class NotFoundError(ChatError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        self.__cause__ = cause


class ValidationError(ChatError):
    pass


class InvalidOperationError(ChatError):
    pass


class RemoteFailure(ChatError):
    """Network, store or push-service failure. The original exception is kept in `cause`."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        self.__cause__ = cause


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Explicit success/failure outcome returned by store operations.

    Exactly one of `value`/`error` is meaningful: `error` is None on success.
    """
    value: Optional[T] = None
    error: Optional[ChatError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ChatError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        if self.error is not None:
            raise self.error
        return self.value


def returns_result(description: str):
    """
    Run a store operation and report its outcome as a Result.

    ChatErrors raised inside become failures as-is, a missing document becomes
    NotFoundError, and anything else is logged and wrapped in RemoteFailure so
    it never crosses the store boundary.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return Result.success(fn(*args, **kwargs))
            except ChatError as exc:
                logger.info("%s rejected: %s", description, exc)
                return Result.failure(exc)
            except NotFound as exc:
                # a referenced document is gone (e.g. update on a deleted conversation)
                logger.info("%s: document not found: %s", description, exc)
                return Result.failure(NotFoundError(f"{description} failed: document not found", exc))
            except Exception as exc:
                logger.exception("%s failed", description)
                return Result.failure(RemoteFailure(f"{description} failed: {exc}", exc))
        return wrapper
    return decorator
