"""Rollout record and outcome state machine.

A rollout enters ``PENDING`` exactly once and leaves it exactly once, into
one of three terminal outcomes.  Records are frozen; the active record
"transitions" by producing a finalized copy via ``RolloutRecord.finalize``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rollwright.models.artifacts import ArtifactRef


class RolloutOutcome(str, Enum):
    """Lifecycle state of a rollout."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


# Terminal outcomes have no outgoing transitions.
VALID_TRANSITIONS: dict[RolloutOutcome, set[RolloutOutcome]] = {
    RolloutOutcome.PENDING: {
        RolloutOutcome.SUCCEEDED,
        RolloutOutcome.ROLLED_BACK,
        RolloutOutcome.FAILED,
    },
    RolloutOutcome.SUCCEEDED: set(),
    RolloutOutcome.ROLLED_BACK: set(),
    RolloutOutcome.FAILED: set(),
}

TERMINAL_OUTCOMES: frozenset[RolloutOutcome] = frozenset(
    {RolloutOutcome.SUCCEEDED, RolloutOutcome.ROLLED_BACK, RolloutOutcome.FAILED}
)


class InvalidOutcomeTransitionError(RuntimeError):
    """Raised when a record is moved along a transition not in VALID_TRANSITIONS."""


def new_record_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"ro-{ts}-{uuid.uuid4().hex[:8]}"


class RolloutOptions(BaseModel):
    """Tunables for a single rollout.  Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    health_timeout: float = Field(default=300.0, gt=0)
    poll_interval: float = Field(default=5.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    initial_backoff: float = Field(default=1.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, gt=1.0)
    auto_rollback: bool = True
    rollback_timeout: float | None = Field(default=None, gt=0)

    @property
    def effective_rollback_timeout(self) -> float:
        return self.rollback_timeout if self.rollback_timeout is not None else self.health_timeout

    def backoff_delays(self) -> list[float]:
        """Delays slept before each retry, strictly increasing."""
        return [
            self.initial_backoff * self.backoff_multiplier ** n
            for n in range(self.max_retries)
        ]


class RolloutRecord(BaseModel):
    """Audit record of one rollout request.

    ``record_hash`` and ``previous_record_hash`` are filled in by
    ``RolloutHistory.append`` and chain a service's records together.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    service_id: str
    target: ArtifactRef
    previous_artifact: ArtifactRef | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    outcome: RolloutOutcome = RolloutOutcome.PENDING
    attempts: int = Field(default=0, ge=0)
    detail: str = ""
    previous_record_hash: str = ""
    record_hash: str = ""

    @model_validator(mode="after")
    def _finished_iff_terminal(self) -> RolloutRecord:
        if self.is_terminal and self.finished_at is None:
            raise ValueError("terminal records must carry finished_at")
        if not self.is_terminal and self.finished_at is not None:
            raise ValueError("pending records cannot carry finished_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES

    def with_attempts(self, attempts: int) -> RolloutRecord:
        """Copy of the pending record with an updated attempt count."""
        if self.is_terminal:
            raise InvalidOutcomeTransitionError(
                f"record {self.id} is {self.outcome.value}; it can no longer change"
            )
        return self.model_copy(update={"attempts": attempts})

    def finalize(self, outcome: RolloutOutcome, detail: str = "") -> RolloutRecord:
        """Return the terminal copy of this record.

        Raises ``InvalidOutcomeTransitionError`` unless the record is
        ``PENDING`` and *outcome* is terminal.
        """
        if outcome not in VALID_TRANSITIONS[self.outcome]:
            raise InvalidOutcomeTransitionError(
                f"Cannot transition rollout {self.id} from {self.outcome.value} "
                f"to {outcome.value}. "
                f"Allowed: {sorted(o.value for o in VALID_TRANSITIONS[self.outcome])}"
            )
        return self.model_copy(
            update={
                "outcome": outcome,
                "detail": detail,
                "finished_at": datetime.now(timezone.utc),
            }
        )
