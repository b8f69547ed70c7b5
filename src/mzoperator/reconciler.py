"""Lifecycle reconciliation for remote deployments.

Each public operation maps caller intent onto remote calls plus a
convergence wait:

    Absent  -> Creating -> Converging -> Ready      (create)
    Ready   -> Updating -> Converging -> Ready      (update)
    Ready   -> Deleting -> Converging -> Absent     (delete)

Any Converging state may end in Failed on a fatal fetch or a timeout.

Operations never raise for remote failures. They return a ReconcileResult
whose ``error`` holds the classified failure and whose ``view`` holds the
last observed state, so the caller stays in sync with remote reality even
when an operation fails. There is no automatic rollback: a create that
allocated a deployment before failing leaves ``deployment_id`` set for a
compensating delete.

CONCURRENCY: The reconciler holds only immutable configuration and the
injected client. All per-operation state lives in the result, so one
instance can serve concurrent operations on different deployments. The
caller must serialize operations on the same deployment id.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, HttpResponseError

from .classifier import (
    Classification,
    DeploymentFetchError,
    Outcome,
    classify_delete_fetch,
    classify_ready_fetch,
    is_converged,
)
from .client import DeploymentClient, validate_deployment_id
from .config import Config
from .models import Deployment, DeploymentView, DesiredConfiguration
from .poller import ConvergenceTimeoutError, await_condition
from .security import log_security_audit_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[Deployment | None, int | None, Exception | None], Classification]

HTTP_OK = 200

# Floor for a fetch capped by the remaining convergence budget
MIN_FETCH_TIMEOUT_SECONDS = 1.0


class Operation(str, Enum):
    """Caller intents handled by the reconciler."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class LifecycleState(str, Enum):
    """Lifecycle states of a managed deployment."""

    ABSENT = "absent"
    CREATING = "creating"
    UPDATING = "updating"
    DELETING = "deleting"
    CONVERGING = "converging"
    READY = "ready"
    FAILED = "failed"


class DeploymentOperationError(Exception):
    """Raised when a mutating call against the deployments API fails."""

    def __init__(
        self,
        message: str,
        operation: Operation,
        deployment_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.deployment_id = deployment_id


# Failures an operation reports through ReconcileResult.error
_RECONCILE_FAILURES = (DeploymentOperationError, DeploymentFetchError, ConvergenceTimeoutError)


@dataclass
class ReconcileResult:
    """Result of a single reconcile operation."""

    operation: Operation
    deployment_id: str | None = None
    state: LifecycleState = LifecycleState.ABSENT
    view: DeploymentView | None = None
    polls: int = 0
    gone: bool = False  # Read found no deployment (404); the caller should forget it
    error: Exception | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the operation succeeded."""
        return self.error is None

    def raise_for_error(self) -> None:
        """Re-raise the stored error, if any."""
        if self.error is not None:
            raise self.error


class DeploymentReconciler:
    """Drives deployments to their desired state and waits for convergence.

    The client and configuration are injected; the credential is passed
    per operation and forwarded to every remote call.
    """

    def __init__(
        self,
        client: DeploymentClient,
        config: Config | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize reconciler.

        Args:
            client: Deployments API client.
            config: Validated configuration; defaults apply when omitted.
            clock: Monotonic clock used for poll deadlines.
            sleep: Sleep coroutine used between polls.
        """
        self._client = client
        self._config = config or Config()
        self._clock = clock
        self._sleep = sleep

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    async def create(
        self,
        desired: DesiredConfiguration,
        *,
        credential: TokenCredential,
        timeout: float | None = None,
    ) -> ReconcileResult:
        """Create a deployment and wait until it is ready.

        Args:
            desired: Size and version to deploy.
            credential: Credential attached to every remote call.
            timeout: Convergence budget in seconds (default: CREATE_TIMEOUT).
        """
        budget = self._budget(timeout, self._config.create_timeout_seconds)
        result = ReconcileResult(operation=Operation.CREATE)

        try:
            self._transition(result, LifecycleState.CREATING)
            try:
                deployment = await self._call(self._client.create, credential, desired)
            except (AzureError, TimeoutError, ValueError) as e:
                # The API may have allocated a deployment before failing
                result.deployment_id = getattr(e, "deployment_id", None)
                self._audit(Operation.CREATE, result.deployment_id, "failure")
                raise DeploymentOperationError(
                    f"failed to create deployment: {e}",
                    Operation.CREATE,
                    result.deployment_id,
                ) from e

            result.deployment_id = deployment.id
            self._observe(result, deployment)
            self._audit(Operation.CREATE, deployment.id, "success")

            await self._converge(
                result, credential, classify_ready_fetch, Outcome.CONVERGED, budget
            )
            self._transition(result, LifecycleState.READY)

        except _RECONCILE_FAILURES as e:
            self._fail(result, e)

        return self._finish(result)

    async def read(
        self,
        deployment_id: str,
        *,
        credential: TokenCredential,
    ) -> ReconcileResult:
        """Refresh the observed state of a deployment.

        Read failures are not retried here; retries only happen inside the
        convergence waits of create, update and delete.
        """
        result = ReconcileResult(
            operation=Operation.READ,
            deployment_id=deployment_id,
            state=LifecycleState.READY,
        )

        try:
            try:
                validate_deployment_id(deployment_id)
                deployment = await self._call(self._client.fetch, credential, deployment_id)
            except HttpResponseError as e:
                result.gone = e.status_code == 404
                raise DeploymentFetchError(
                    f"failed to retrieve deployment: {e}", status_code=e.status_code
                ) from e
            except (AzureError, TimeoutError, ValueError) as e:
                raise DeploymentFetchError(f"failed to retrieve deployment: {e}") from e

            self._observe(result, deployment)
            if not is_converged(deployment):
                result.state = LifecycleState.CONVERGING

        except _RECONCILE_FAILURES as e:
            self._fail(result, e)

        return self._finish(result)

    async def update(
        self,
        deployment_id: str,
        desired: DesiredConfiguration,
        *,
        credential: TokenCredential,
        timeout: float | None = None,
    ) -> ReconcileResult:
        """Apply a new desired configuration and wait until it is ready.

        The full configuration is sent on every call; nothing is deduplicated.
        """
        budget = self._budget(timeout, self._config.update_timeout_seconds)
        result = ReconcileResult(
            operation=Operation.UPDATE,
            deployment_id=deployment_id,
            state=LifecycleState.READY,
        )

        try:
            self._transition(result, LifecycleState.UPDATING)
            try:
                validate_deployment_id(deployment_id)
                deployment = await self._call(
                    self._client.update, credential, deployment_id, desired
                )
            except (AzureError, TimeoutError, ValueError) as e:
                self._audit(Operation.UPDATE, deployment_id, "failure")
                raise DeploymentOperationError(
                    f"failed to update deployment: {e}", Operation.UPDATE, deployment_id
                ) from e

            self._observe(result, deployment)
            self._audit(Operation.UPDATE, deployment_id, "success")

            await self._converge(
                result, credential, classify_ready_fetch, Outcome.CONVERGED, budget
            )
            self._transition(result, LifecycleState.READY)

        except _RECONCILE_FAILURES as e:
            self._fail(result, e)

        return self._finish(result)

    async def delete(
        self,
        deployment_id: str,
        *,
        credential: TokenCredential,
        timeout: float | None = None,
    ) -> ReconcileResult:
        """Delete a deployment and wait until the API reports it gone (404)."""
        budget = self._budget(timeout, self._config.delete_timeout_seconds)
        result = ReconcileResult(
            operation=Operation.DELETE,
            deployment_id=deployment_id,
            state=LifecycleState.READY,
        )

        try:
            self._transition(result, LifecycleState.DELETING)
            try:
                validate_deployment_id(deployment_id)
                await self._call(self._client.delete, credential, deployment_id)
            except (AzureError, TimeoutError, ValueError) as e:
                self._audit(Operation.DELETE, deployment_id, "failure")
                raise DeploymentOperationError(
                    f"failed to delete deployment: {e}", Operation.DELETE, deployment_id
                ) from e

            self._audit(Operation.DELETE, deployment_id, "success")

            await self._converge(
                result, credential, classify_delete_fetch, Outcome.ABSENT, budget
            )
            result.view = None
            self._transition(result, LifecycleState.ABSENT)

        except _RECONCILE_FAILURES as e:
            self._fail(result, e)

        return self._finish(result)

    async def _converge(
        self,
        result: ReconcileResult,
        credential: TokenCredential,
        classify: Classifier,
        target: Outcome,
        timeout: float,
    ) -> Classification:
        """Poll the deployment until ``classify`` yields ``target``."""
        # SAFETY: every caller records the deployment id before converging
        assert result.deployment_id is not None
        deployment_id = result.deployment_id

        self._transition(result, LifecycleState.CONVERGING)
        deadline = self._clock() + timeout
        observed: list[Classification] = []

        async def fetch() -> Classification:
            result.polls += 1
            # A single fetch may not outlive the convergence budget
            remaining = max(deadline - self._clock(), MIN_FETCH_TIMEOUT_SECONDS)
            capped = remaining < self._call_timeout()
            try:
                deployment = await self._call(
                    self._client.fetch, credential, deployment_id, timeout=remaining
                )
            except HttpResponseError as e:
                return classify(None, e.status_code, e)
            except TimeoutError as e:
                if capped:
                    last = observed[-1] if observed else None
                    raise ConvergenceTimeoutError(last, timeout, result.polls) from e
                return classify(None, None, e)
            except (AzureError, ValueError) as e:
                return classify(None, None, e)
            return classify(deployment, HTTP_OK, None)

        def on_attempt(classification: Classification) -> None:
            observed[:] = [classification]
            if classification.deployment is not None:
                self._observe(result, classification.deployment)

        return await await_condition(
            fetch,
            lambda classification: classification.outcome == target,
            timeout,
            backoff=self._config.backoff,
            on_attempt=on_attempt,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def _call(
        self, fn: Callable[..., T], *args: Any, timeout: float | None = None
    ) -> T:
        """Run a blocking client call in the default executor with a timeout.

        The bound covers the pipeline's own transport retries, lowered to
        ``timeout`` when given. Cancelling the calling task abandons the wait
        immediately.
        """
        loop = asyncio.get_running_loop()
        call_timeout = self._call_timeout()
        if timeout is not None:
            call_timeout = min(call_timeout, timeout)
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(fn, *args)),
            timeout=call_timeout,
        )

    def _call_timeout(self) -> float:
        return float(
            self._config.request_timeout_seconds * (self._config.max_request_retries + 1)
        )

    def _observe(self, result: ReconcileResult, deployment: Deployment) -> None:
        """Propagate observed fields into the result.

        Raises:
            DeploymentOperationError: If the observation belongs to a different deployment.
        """
        if result.deployment_id is not None and deployment.id != result.deployment_id:
            raise DeploymentOperationError(
                f"deployment id changed from {result.deployment_id} to {deployment.id}",
                result.operation,
                result.deployment_id,
            )
        result.view = deployment.to_view()

    def _budget(self, timeout: float | None, default: int) -> float:
        budget = float(default) if timeout is None else timeout
        if budget <= 0:
            raise ValueError(f"timeout must be positive: {budget}")
        return budget

    def _transition(self, result: ReconcileResult, state: LifecycleState) -> None:
        logger.info(
            "Deployment state transition",
            extra={
                "operation": result.operation.value,
                "deployment_id": result.deployment_id,
                "from_state": result.state.value,
                "to_state": state.value,
            },
        )
        result.state = state

    def _fail(self, result: ReconcileResult, error: Exception) -> None:
        result.error = error
        self._transition(result, LifecycleState.FAILED)

    def _audit(self, operation: Operation, deployment_id: str | None, outcome: str) -> None:
        log_security_audit_event(
            "deployment",
            target_resource=deployment_id,
            action=operation.value,
            result=outcome,
        )

    def _finish(self, result: ReconcileResult) -> ReconcileResult:
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def _log_result(self, result: ReconcileResult) -> None:
        """Log operation result with structured data."""
        extra: dict[str, Any] = {
            "operation": result.operation.value,
            "deployment_id": result.deployment_id,
            "state": result.state.value,
            "polls": result.polls,
            "duration_seconds": result.duration_seconds,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
