"""Error kinds raised by the evidence store, policy model and gate controller.

API routes translate these into HTTP status codes; scripts into exit codes.
"""

from __future__ import annotations

from typing import Any


class GateError(Exception):
    """Base class for engine errors."""


class DuplicateEvidence(GateError):
    """An identical (run, kind, source, timestamp) tuple was already appended.

    Idempotent: carries the existing record so callers can return it.
    """

    def __init__(self, existing: Any) -> None:
        self.existing = existing
        super().__init__(
            f"evidence already recorded as seq={getattr(existing, 'seq', None)}"
        )


class InvalidEvidence(GateError):
    """Malformed or unauthenticated evidence submission. Rejected, not stored."""

    def __init__(self, reason: str, errors: list[dict] | None = None) -> None:
        self.reason = reason
        self.errors = errors or []
        super().__init__(reason)


class NoPolicyDefined(GateError):
    """No policy rules are configured for an environment/stage pair. Fail-closed."""

    def __init__(self, environment: str, stage: str | None, detail: str = "") -> None:
        self.environment = environment
        self.stage = stage
        msg = f"no policy defined for environment={environment!r} stage={stage!r}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class EvaluationTimeout(GateError):
    """Evidence query or evaluation exceeded its deadline. Retryable."""


class StaleSnapshotConflict(GateError):
    """A concurrent advance for the same run was detected. Retry the advance."""


class RunNotFound(GateError):
    """No pipeline run with the given id."""


class RunAlreadyExists(GateError):
    """A pipeline run with the given id already exists."""


class StageOutOfOrder(GateError):
    """Requested stage is not part of the run or is not its current stage."""


class InvalidOverride(GateError):
    """Override request is missing a justification or names unknown rules."""
