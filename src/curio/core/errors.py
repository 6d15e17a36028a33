"""Error taxonomy for the population pipeline.

Infrastructure errors (CollaboratorError and subclasses, CollaboratorTimeout)
are retried locally and then surfaced in summaries. Policy decisions are not
errors: PolicyRejection only short-circuits curation steps and is turned
into a Rejected status inside the pipeline.
"""

from __future__ import annotations


class CurioError(Exception):
    """Base class for all curio errors."""


class QuotaExceeded(CurioError):
    """Daily source request budget is exhausted."""

    def __init__(self, used: int, limit: int):
        super().__init__(f"Daily source quota exhausted ({used}/{limit})")
        self.used = used
        self.limit = limit


class CollaboratorError(CurioError):
    """An external collaborator was unreachable or returned an error."""


class SourceUnavailableError(CollaboratorError):
    """The image source failed (network, 5xx, throttling)."""


class ClassificationInfrastructureError(CollaboratorError):
    """Classifier, scorer or attribute extractor failed to answer."""


class CollaboratorTimeout(CollaboratorError, TimeoutError):
    """An external call exceeded its deadline."""


class PolicyRejection(CurioError):
    """Content failed a safety, quality or duplicate rule."""

    def __init__(self, reason: str, detail: str | None = None):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class GenerationFailure(CurioError):
    """Entry generation failed after exhausting retries."""

    def __init__(
        self,
        candidate_id: str,
        attempts: int,
        cause: BaseException,
        *,
        kind: str | None = None,
        severity: str = "high",
    ):
        super().__init__(
            f"Generation failed for {candidate_id} after {attempts} attempt(s): {cause}"
        )
        self.candidate_id = candidate_id
        self.attempts = attempts
        self.error_kind = kind or type(cause).__name__
        self.severity = severity


class ConcurrentConsumptionConflict(CurioError):
    """Candidate left the Approved state before this run reached it."""

    def __init__(self, candidate_id: str, status: str | None):
        super().__init__(f"Candidate {candidate_id} is no longer approved (status={status})")
        self.candidate_id = candidate_id
        self.status = status


class InvalidTransitionError(CurioError):
    """Requested status change would move a candidate backwards."""

    def __init__(self, candidate_id: str, current: str | None, target: str):
        super().__init__(f"Cannot move candidate {candidate_id} from {current} to {target}")
        self.candidate_id = candidate_id
        self.current = current
        self.target = target


class RunLogFinalizedError(CurioError):
    """A completed batch run log cannot be mutated."""


class RunInProgress(CurioError):
    """A run of the same kind is already active."""

    def __init__(self, kind: str):
        super().__init__(f"A {kind} run is already in progress")
        self.kind = kind
