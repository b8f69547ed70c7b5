"""Classification of fetch results during convergence waits.

Every observation of a deployment is reduced to one of four outcomes:

- CONVERGING: the deployment exists but remote work is still pending
- CONVERGED: no pending update and the statefulset reports "OK"
- ABSENT: the API answered 404
- FATAL: any other failure; polling must stop

Only the delete wait accepts ABSENT; the create and update waits use
classify_ready_fetch, which turns it into FATAL.

The 404 check comes first and looks only at the status code, so a
structured not-found is recognised whether or not the client also raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import STATEFULSET_STATUS_OK, Deployment

HTTP_NOT_FOUND = 404


class Outcome(str, Enum):
    """Semantic outcome of a single fetch."""

    CONVERGING = "converging"
    CONVERGED = "converged"
    ABSENT = "absent"
    FATAL = "fatal"


class DeploymentFetchError(Exception):
    """Raised when a deployment cannot be retrieved."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Classification:
    """Tagged result of classifying one fetch."""

    outcome: Outcome
    deployment: Deployment | None = None
    error: Exception | None = None

    # Human-readable description of a non-terminal state, used in timeout errors
    detail: str = ""

    @property
    def is_fatal(self) -> bool:
        return self.outcome == Outcome.FATAL


def is_converged(deployment: Deployment) -> bool:
    """Check whether a deployment is stable and ready."""
    return (
        not deployment.flagged_for_update
        and deployment.statefulset_status == STATEFULSET_STATUS_OK
    )


def _fatal(status_code: int | None, error: Exception) -> Classification:
    wrapped = DeploymentFetchError(
        f"failed to retrieve deployment: {error}", status_code=status_code
    )
    wrapped.__cause__ = error
    return Classification(outcome=Outcome.FATAL, error=wrapped)


def classify_fetch(
    deployment: Deployment | None,
    status_code: int | None,
    error: Exception | None,
) -> Classification:
    """Classify a fetch made while waiting for a deployment to become ready.

    Args:
        deployment: Observed deployment, if the fetch succeeded.
        status_code: HTTP status of the fetch, if a response was received.
        error: Exception raised by the fetch, if any.
    """
    if status_code == HTTP_NOT_FOUND:
        return Classification(outcome=Outcome.ABSENT, error=error, detail="deployment not found")

    if error is not None:
        return _fatal(status_code, error)

    if deployment is None:
        return _fatal(status_code, ValueError("empty response"))

    if is_converged(deployment):
        return Classification(outcome=Outcome.CONVERGED, deployment=deployment)

    return Classification(
        outcome=Outcome.CONVERGING,
        deployment=deployment,
        detail=(
            f"expected deployment to be ready but got "
            f"flagged_for_update={str(deployment.flagged_for_update).lower()} "
            f"status={deployment.statefulset_status}"
        ),
    )


def classify_ready_fetch(
    deployment: Deployment | None,
    status_code: int | None,
    error: Exception | None,
) -> Classification:
    """Classify a fetch made while waiting for a create or update to converge.

    A deployment that disappears while it should be converging cannot
    become ready, so not-found is FATAL here rather than ABSENT.
    """
    result = classify_fetch(deployment, status_code, error)
    if result.outcome == Outcome.ABSENT:
        return _fatal(HTTP_NOT_FOUND, error or LookupError("deployment not found"))
    return result


def classify_delete_fetch(
    deployment: Deployment | None,
    status_code: int | None,
    error: Exception | None,
) -> Classification:
    """Classify a fetch made while waiting for a deployment to disappear.

    ABSENT is the success state here. Any observed deployment, converged or
    not, means deletion is still in progress.
    """
    result = classify_fetch(deployment, status_code, error)
    if result.outcome in (Outcome.ABSENT, Outcome.FATAL):
        return result

    # SAFETY: classify_fetch only returns CONVERGING/CONVERGED with a deployment
    assert result.deployment is not None
    observed = result.deployment
    return Classification(
        outcome=Outcome.CONVERGING,
        deployment=observed,
        detail=(
            f"expected deployment to be deleted but got "
            f"flagged_for_deletion={str(observed.flagged_for_deletion).lower()} "
            f"status={observed.statefulset_status}"
        ),
    )
