"""Scripted in-memory deployments API client.

Each operation returns (or raises) the next scripted response. Fetch
responses are consumed in order and the last one repeats, which makes it
easy to express "pending, pending, ready" or "present, then 404".
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from mzoperator.models import Deployment, DesiredConfiguration

DEFAULT_DEPLOYMENT_ID = "d1"

Scripted = Deployment | Exception


def make_deployment(**overrides: Any) -> Deployment:
    """Build a deployment with converged defaults.

    Args:
        **overrides: Field values (snake_case) replacing the defaults.
    """
    data: dict[str, Any] = {
        "id": DEFAULT_DEPLOYMENT_ID,
        "hostname": "d1.materialize.cloud",
        "cluster_id": "cluster-1",
        "name": "bright-lake",
        "size": "xsmall",
        "mz_version": "0.10",
        "flagged_for_update": False,
        "flagged_for_deletion": False,
        "statefulset_status": "OK",
    }
    data.update(overrides)
    return Deployment(**data)


def http_error(
    status_code: int,
    error_type: type[HttpResponseError] = HttpResponseError,
    message: str | None = None,
) -> HttpResponseError:
    """Build an azure-core HTTP error carrying a status code."""
    error = error_type(message=message or f"Operation returned an invalid status '{status_code}'")
    error.status_code = status_code
    return error


def not_found_error() -> ResourceNotFoundError:
    """Build the error the client raises for a 404."""
    error = http_error(404, ResourceNotFoundError, "Deployment not found")
    assert isinstance(error, ResourceNotFoundError)
    return error


@dataclass
class RecordedCall:
    """One call made against the mock client."""

    method: str
    deployment_id: str | None = None
    payload: dict[str, Any] | None = None
    token: str | None = None


@dataclass
class MockDeploymentClient:
    """Scripted DeploymentClient implementation."""

    create_response: Scripted = field(default_factory=make_deployment)
    update_response: Scripted = field(default_factory=make_deployment)
    delete_error: Exception | None = None
    fetch_responses: list[Scripted] = field(default_factory=lambda: [make_deployment()])
    calls: list[RecordedCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.fetch_responses:
            raise ValueError("fetch_responses must contain at least one response")
        self._fetch_index = 0

    @property
    def fetch_count(self) -> int:
        return self._count("fetch")

    @property
    def update_payloads(self) -> list[dict[str, Any] | None]:
        return [call.payload for call in self.calls if call.method == "update"]

    def calls_to(self, method: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.method == method]

    def create(self, credential: TokenCredential, desired: DesiredConfiguration) -> Deployment:
        self._record("create", credential, payload=desired.to_request())
        return self._respond(self.create_response)

    def fetch(self, credential: TokenCredential, deployment_id: str) -> Deployment:
        self._record("fetch", credential, deployment_id=deployment_id)
        response = self.fetch_responses[min(self._fetch_index, len(self.fetch_responses) - 1)]
        self._fetch_index += 1
        return self._respond(response)

    def update(
        self, credential: TokenCredential, deployment_id: str, desired: DesiredConfiguration
    ) -> Deployment:
        self._record(
            "update", credential, deployment_id=deployment_id, payload=desired.to_request()
        )
        return self._respond(self.update_response)

    def delete(self, credential: TokenCredential, deployment_id: str) -> None:
        self._record("delete", credential, deployment_id=deployment_id)
        if self.delete_error is not None:
            raise self.delete_error

    def _record(
        self,
        method: str,
        credential: TokenCredential,
        deployment_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        token = credential.get_token("mzcloud").token
        self.calls.append(
            RecordedCall(
                method=method,
                deployment_id=deployment_id,
                payload=copy.deepcopy(payload),
                token=token,
            )
        )

    def _count(self, method: str) -> int:
        return len(self.calls_to(method))

    @staticmethod
    def _respond(response: Scripted) -> Deployment:
        if isinstance(response, Exception):
            raise response
        return response
