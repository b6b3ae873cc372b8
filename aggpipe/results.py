"""Result and outcome types shared by the executor, refresher and orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, computed_field

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """Explicit success/failure value for steps whose failures are recoverable.

    Exactly one of ``value`` (on success) or ``error`` is meaningful.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: bool
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        return cls(ok=False, error=error)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    NOT_RUN = "not_run"


class JobOutcome(BaseModel):
    """
    The success/failure record for one aggregation kind in one invocation.

    Attributes:
        kind (str): The aggregation kind the outcome belongs to.
        status (OutcomeStatus): ``succeeded``; ``failed`` when the engine accepted the statement
            but reported an error; ``timed_out`` when the deadline elapsed; ``not_run`` when the
            statement could not be built or submitted.
        error_message (str | None): Engine or exception text for unsuccessful outcomes.
        statement_id (str | None): Engine-side identifier of the submitted statement, if any.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    status: OutcomeStatus
    error_message: str | None = None
    statement_id: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "success": self.succeeded,
            "status": self.status.value,
        }
        if self.error_message:
            payload["error"] = self.error_message
        return payload


class BatchReport(BaseModel):
    """Ordered per-kind outcomes of a whole-catalog run."""

    model_config = ConfigDict(frozen=True)

    outcomes: tuple[JobOutcome, ...]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_succeeded(self) -> bool:
        return all(outcome.succeeded for outcome in self.outcomes)

    @property
    def failed_kinds(self) -> list[str]:
        return [outcome.kind for outcome in self.outcomes if not outcome.succeeded]

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.all_succeeded,
            "results": [outcome.to_payload() for outcome in self.outcomes],
        }
