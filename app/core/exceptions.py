from typing import Any, Dict, Iterable, List, Optional, Union

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors.

    entity_ids lists the offending ids (students, years, runs) so the operator can act
    without reading logs.
    """

    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        entity_ids: Optional[Iterable[Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.entity_ids: List[str] = [str(e) for e in (entity_ids or [])]

    @property
    def detail(self) -> Union[str, Dict[str, Any]]:
        if not self.entity_ids:
            return self.message
        return {"message": self.message, "entity_ids": self.entity_ids}


class ValidationError(ServiceError):
    """Bad input or missing precondition data. Caller fixes input and retries."""

    default_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    default_status = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    """Per-school lock is held or the target state already exists. Retry with backoff."""

    default_status = status.HTTP_409_CONFLICT


class StateError(ServiceError):
    """Lifecycle operation not permitted in the current state. Not retried."""

    default_status = status.HTTP_409_CONFLICT


class InvalidTransitionError(StateError):
    def __init__(self, from_status: str, to_status: str, entity_id: Any = None) -> None:
        super().__init__(
            f"Invalid academic year transition {from_status} -> {to_status}",
            entity_ids=[entity_id] if entity_id is not None else None,
        )
        self.from_status = from_status
        self.to_status = to_status


class LockedError(ServiceError):
    """Write attempted against a closed academic year. Never retried."""

    default_status = status.HTTP_423_LOCKED


class ExecutionError(ServiceError):
    """Mid-batch failure during a promotion commit. The run is marked failed."""

    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class AuthorizationError(ServiceError):
    default_status = status.HTTP_403_FORBIDDEN
