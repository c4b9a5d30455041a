"""Pure state machines for the fixed-interval polling loops.

Each ``advance_*`` function takes the previous state plus one observation of the
backend and returns the next state. The loops that sleep and call the backend
live in the uploader and verifier; these functions never touch time or I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable


Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class OperationObservation:
    done: bool
    error: str | None = None


@dataclass(frozen=True)
class ImportPollState:
    attempts: int = 0
    done: bool = False
    error: str | None = None
    timed_out: bool = False

    @property
    def finished(self) -> bool:
        return self.done or self.error is not None or self.timed_out


def advance_import(
    state: ImportPollState,
    observation: OperationObservation,
    *,
    max_attempts: int,
    counted: bool = True,
) -> ImportPollState:
    attempts = state.attempts + 1 if counted else state.attempts
    if observation.error:
        return replace(state, attempts=attempts, error=observation.error)
    if observation.done:
        return replace(state, attempts=attempts, done=True)
    if attempts >= max_attempts:
        return replace(state, attempts=attempts, timed_out=True)
    return replace(state, attempts=attempts)


class VerifyPhase(str, Enum):
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class DocumentObservation:
    state: str | None = None
    error: str | None = None
    fatal: bool = False


@dataclass(frozen=True)
class VerifyState:
    attempts: int = 0
    phase: VerifyPhase = VerifyPhase.PROCESSING
    error: str | None = None
    optimistic: bool = False

    @property
    def finished(self) -> bool:
        return self.phase is not VerifyPhase.PROCESSING


def advance_verification(
    state: VerifyState,
    observation: DocumentObservation | None,
    *,
    max_attempts: int,
    grace_attempts: int,
) -> VerifyState:
    """One verification step.

    ``observation`` is None when the upload response carried no document
    identifier. In that case the document is assumed ready once the grace period
    has elapsed, because the import operation already reported completion. This
    can mark a file ready shortly before it is searchable.
    """
    attempts = state.attempts + 1
    if observation is None:
        if attempts >= grace_attempts:
            return replace(state, attempts=attempts, phase=VerifyPhase.ACTIVE, optimistic=True)
    elif observation.fatal:
        return replace(state, attempts=attempts, phase=VerifyPhase.FAILED, error=observation.error)
    elif observation.state == VerifyPhase.ACTIVE.value:
        return replace(state, attempts=attempts, phase=VerifyPhase.ACTIVE)
    elif observation.state == VerifyPhase.FAILED.value:
        return replace(
            state,
            attempts=attempts,
            phase=VerifyPhase.FAILED,
            error=observation.error or "Document processing failed",
        )

    if attempts >= max_attempts:
        return replace(
            state,
            attempts=attempts,
            phase=VerifyPhase.TIMEOUT,
            error=f"Indexing did not finish after {attempts} checks",
        )
    return replace(state, attempts=attempts)
