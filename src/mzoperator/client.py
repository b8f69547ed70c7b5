"""Deployments API client built on the azure-core HTTP pipeline.

The client is a thin collaborator: it performs exactly one logical remote
call per method and never waits for convergence. Transport failures,
throttling and 5xx responses are retried inside the pipeline by
RetryPolicy; anything that escapes is raised as an azure-core exception
carrying the HTTP status code.

Credentials are passed per call and attached to the request as a bearer
token. Nothing authentication-related is stored on the client.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol
from urllib.parse import quote

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    ClientAuthenticationError,
    DecodeError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline import policies
from azure.core.rest import HttpRequest, HttpResponse
from pydantic import ValidationError

from .config import Config
from .models import Deployment, DesiredConfiguration

logger = logging.getLogger(__name__)

SDK_MONIKER = "mzcloud-operator/0.1.0"
DEPLOYMENTS_PATH = "/api/deployments"

# Access tokens are not scoped; the scope is only passed for protocol compatibility
TOKEN_SCOPE = "mzcloud"

VALID_DEPLOYMENT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$"

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


class DeploymentCreateError(HttpResponseError):
    """Create failed, but the API may already have allocated a deployment.

    When the error response still names the new deployment, its id is kept
    in ``deployment_id`` so the caller can issue a compensating delete.
    """

    def __init__(self, *args: Any, deployment_id: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.deployment_id = deployment_id


class DeploymentClient(Protocol):
    """Contract the reconciler needs from a deployments API client."""

    def create(self, credential: TokenCredential, desired: DesiredConfiguration) -> Deployment: ...

    def fetch(self, credential: TokenCredential, deployment_id: str) -> Deployment: ...

    def update(
        self, credential: TokenCredential, deployment_id: str, desired: DesiredConfiguration
    ) -> Deployment: ...

    def delete(self, credential: TokenCredential, deployment_id: str) -> None: ...


def validate_deployment_id(deployment_id: str) -> str:
    """Validate a deployment id before it is placed in a URL.

    Raises:
        ValueError: If the id is empty or contains characters outside the allowed set.
    """
    if not deployment_id or not re.match(VALID_DEPLOYMENT_ID_PATTERN, deployment_id):
        raise ValueError(f"Invalid deployment id: {deployment_id!r}")
    return deployment_id


class MzCloudClient:
    """Deployments API client.

    Usage:
        with MzCloudClient(config) as client:
            deployment = client.fetch(credential, "d1")
    """

    def __init__(self, config: Config, **kwargs: Any) -> None:
        """Initialize the pipeline.

        Args:
            config: Validated configuration (base URL, timeouts, retries).
            **kwargs: Passed through to PipelineClient (e.g. ``transport``).
        """
        self._config = config
        self._client = PipelineClient(
            base_url=config.api_url,
            policies=[
                policies.HeadersPolicy({"Accept": "application/json"}),
                policies.UserAgentPolicy(sdk_moniker=SDK_MONIKER),
                policies.RetryPolicy(retry_total=config.max_request_retries),
                policies.NetworkTraceLoggingPolicy(),
                policies.HttpLoggingPolicy(),
            ],
            **kwargs,
        )

    def create(self, credential: TokenCredential, desired: DesiredConfiguration) -> Deployment:
        """Request a new deployment. Does not wait for it to become ready."""
        request = HttpRequest("POST", DEPLOYMENTS_PATH, json=desired.to_request())
        response = self._send(credential, request)

        if response.status_code not in (200, 201):
            deployment_id = _extract_id(response)
            if deployment_id is not None:
                # The allocated id outranks a more specific error type
                raise DeploymentCreateError(response=response, deployment_id=deployment_id)
            map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
            raise DeploymentCreateError(response=response, deployment_id=deployment_id)

        return _deserialize(response)

    def fetch(self, credential: TokenCredential, deployment_id: str) -> Deployment:
        """Retrieve the current observed state of a deployment.

        Raises:
            ResourceNotFoundError: If the deployment does not exist (status 404).
            HttpResponseError: For any other failed response.
        """
        request = HttpRequest("GET", _deployment_path(deployment_id))
        response = self._send(credential, request)
        _raise_for_status(response, expected=(200,))
        return _deserialize(response)

    def update(
        self, credential: TokenCredential, deployment_id: str, desired: DesiredConfiguration
    ) -> Deployment:
        """Apply a new size/version. Does not wait for convergence."""
        request = HttpRequest("PUT", _deployment_path(deployment_id), json=desired.to_request())
        response = self._send(credential, request)
        _raise_for_status(response, expected=(200,))
        return _deserialize(response)

    def delete(self, credential: TokenCredential, deployment_id: str) -> None:
        """Request destruction of a deployment. Does not wait for it to disappear."""
        request = HttpRequest("DELETE", _deployment_path(deployment_id))
        response = self._send(credential, request)
        _raise_for_status(response, expected=(200, 202, 204))

    def _send(self, credential: TokenCredential, request: HttpRequest) -> HttpResponse:
        token = credential.get_token(TOKEN_SCOPE)
        request.headers["Authorization"] = f"Bearer {token.token}"
        request.url = self._client.format_url(request.url)

        logger.debug(
            "Sending deployments API request",
            extra={"method": request.method, "url": request.url},
        )
        return self._client.send_request(
            request,
            connection_timeout=self._config.request_timeout_seconds,
            read_timeout=self._config.request_timeout_seconds,
        )

    def close(self) -> None:
        """Close the underlying transport."""
        self._client.close()

    def __enter__(self) -> MzCloudClient:
        self._client.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        self._client.__exit__(*args)


def _deployment_path(deployment_id: str) -> str:
    validate_deployment_id(deployment_id)
    return f"{DEPLOYMENTS_PATH}/{quote(deployment_id, safe='')}"


def _raise_for_status(response: HttpResponse, expected: tuple[int, ...]) -> None:
    if response.status_code in expected:
        return
    map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
    raise HttpResponseError(response=response)


def _deserialize(response: HttpResponse) -> Deployment:
    try:
        payload = response.json()
    except ValueError as e:
        raise DecodeError(message=f"Response is not valid JSON: {e}", response=response) from e

    if not isinstance(payload, dict):
        raise DecodeError(message="Response must be a JSON object", response=response)

    try:
        return Deployment.from_api(payload)
    except ValidationError as e:
        raise DecodeError(message=f"Unexpected deployment payload: {e}", response=response) from e


def _extract_id(response: HttpResponse) -> str | None:
    """Return the deployment id from an error body, if the API included one."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("id"), str) and payload["id"]:
        return payload["id"]
    return None
