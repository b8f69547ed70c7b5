"""Pydantic models for deployments with validation.

These models provide:
1. Type-safe parsing of API responses (camelCase wire keys)
2. Validation of the desired configuration at the boundary
3. Explicit field-by-field mapping to request payloads and caller views
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Canonical statefulset status of a ready deployment
STATEFULSET_STATUS_OK = "OK"


class Deployment(BaseModel):
    """Observed state of a remote deployment."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: Annotated[str, Field(min_length=1)]
    hostname: str | None = None
    cluster_id: str | None = Field(None, alias="clusterId")
    name: str | None = None
    size: str | None = None
    mz_version: str | None = Field(None, alias="mzVersion")

    # Remote-computed convergence signals
    flagged_for_update: bool = Field(False, alias="flaggedForUpdate")
    flagged_for_deletion: bool = Field(False, alias="flaggedForDeletion")
    statefulset_status: str = Field("", alias="statefulsetStatus")

    @field_validator("statefulset_status", mode="before")
    @classmethod
    def coerce_missing_status(cls, v: Any) -> Any:
        # The API reports a not-yet-scheduled statefulset as null
        return "" if v is None else v

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> Deployment:
        """Build a deployment from an API response body."""
        return cls.model_validate(payload)

    def to_view(self) -> DeploymentView:
        """Project the observed state onto the caller-facing view."""
        return DeploymentView(
            id=self.id,
            hostname=self.hostname,
            cluster_id=self.cluster_id,
            name=self.name,
            size=self.size,
            mz_version=self.mz_version,
        )


class DesiredConfiguration(BaseModel):
    """User-controlled deployment settings.

    Always sent in full; there is no partial-field diffing.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    size: Annotated[str, Field(min_length=1)]
    mz_version: Annotated[str, Field(min_length=1, alias="mzVersion")]

    @field_validator("size", "mz_version")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    def to_request(self) -> dict[str, Any]:
        """Convert to the deployments API request body."""
        return {
            "size": self.size,
            "mzVersion": self.mz_version,
        }


class DeploymentView(BaseModel):
    """Caller-facing deployment state (observed state minus convergence flags)."""

    model_config = ConfigDict(frozen=True)

    id: str
    hostname: str | None = None
    cluster_id: str | None = None
    name: str | None = None
    size: str | None = None
    mz_version: str | None = None
