"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations

from typing import Any


class ArenaError(Exception):
    """Base class for every expected failure surfaced to callers."""

    code = "arena_error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(ArenaError):
    code = "validation_error"
    status_code = 400


class NotFoundError(ArenaError):
    code = "not_found"
    status_code = 404


class ConflictError(ArenaError):
    """Illegal state transition or duplicate write."""

    code = "conflict"
    status_code = 409


class NotReadyError(ConflictError):
    code = "not_ready"

    def __init__(self, message: str, *, minutes_remaining: int) -> None:
        super().__init__(message, minutes_remaining=minutes_remaining)
        self.minutes_remaining = minutes_remaining


class UpstreamError(ArenaError):
    """An oracle, trading or settlement collaborator failed or had no answer."""

    code = "upstream_error"
    status_code = 502

    def __init__(self, message: str, *, can_retry: bool = False, **details: Any) -> None:
        super().__init__(message, can_retry=can_retry, **details)
        self.can_retry = can_retry

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["canRetry"] = payload.pop("can_retry")
        return payload


class InternalError(ArenaError):
    code = "internal_error"
    status_code = 500


__all__ = [
    "ArenaError",
    "ConflictError",
    "InternalError",
    "NotFoundError",
    "NotReadyError",
    "UpstreamError",
    "ValidationError",
]
