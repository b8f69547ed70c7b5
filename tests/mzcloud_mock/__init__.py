"""Deployments API mocks for reconciler testing.

Provides a scripted in-memory client and a recording bearer-token
credential so the full create/read/update/delete flows can be exercised
without network access.

Usage:
    from mzcloud_mock import MockDeploymentClient, create_mock_credential, make_deployment

    client = MockDeploymentClient(
        fetch_responses=[make_deployment(statefulset_status="PENDING"), make_deployment()],
    )
    reconciler = DeploymentReconciler(client, config)
    result = await reconciler.create(desired, credential=create_mock_credential())

    assert client.fetch_count == 2
"""

from .client import (
    DEFAULT_DEPLOYMENT_ID,
    MockDeploymentClient,
    RecordedCall,
    http_error,
    make_deployment,
    not_found_error,
)
from .credential import MockTokenCredential, create_mock_credential

__all__ = [
    "DEFAULT_DEPLOYMENT_ID",
    "MockDeploymentClient",
    "MockTokenCredential",
    "RecordedCall",
    "create_mock_credential",
    "http_error",
    "make_deployment",
    "not_found_error",
]
