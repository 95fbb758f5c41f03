"""Wire models shared by the QuickBooks Online clients."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class FaultError(BaseModel):
    """A single error entry inside a provider fault."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    message: str = Field(
        default="", validation_alias=AliasChoices("Message", "message")
    )
    detail: str | None = Field(
        default=None, validation_alias=AliasChoices("Detail", "detail")
    )
    code: str | None = Field(default=None, validation_alias=AliasChoices("code", "Code"))
    element: str | None = Field(
        default=None, validation_alias=AliasChoices("element", "Element")
    )


class Fault(BaseModel):
    """Structured error envelope returned by QuickBooks Online.

    The provider spells the keys ``Fault``/``Error`` on most endpoints and
    ``fault``/``error`` on authentication failures; both are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str | None = Field(default=None, validation_alias=AliasChoices("type", "Type"))
    errors: list[FaultError] = Field(
        default_factory=list, validation_alias=AliasChoices("Error", "error")
    )

    @property
    def message(self) -> str:
        """Human readable summary of every error in the fault."""
        parts = []
        for error in self.errors:
            if error.detail:
                parts.append(f"{error.message}: {error.detail}")
            else:
                parts.append(error.message)
        summary = "; ".join(part for part in parts if part)
        if self.type:
            return f"{self.type}: {summary}" if summary else self.type
        return summary or "Unknown fault"

    @classmethod
    def from_response_data(cls, data: Any) -> Fault | None:
        """Extract a fault from a decoded response body, if it has one."""
        if not isinstance(data, dict):
            return None
        for key in ("Fault", "fault"):
            if isinstance(data.get(key), dict):
                return cls.model_validate(data[key])
        return None


class TokenResponse(BaseModel):
    """Response body of the OAuth2 token endpoint."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"
    x_refresh_token_expires_in: int | None = None


class DiscoveryDoc(BaseModel):
    """OpenID discovery document describing the provider's OAuth2 endpoints."""

    model_config = ConfigDict(extra="allow")

    token_endpoint: str
    issuer: str = ""
    authorization_endpoint: str = ""
    userinfo_endpoint: str = ""
    revocation_endpoint: str = ""
    jwks_uri: str = ""
    response_types_supported: list[str] = Field(default_factory=list)
    subject_types_supported: list[str] = Field(default_factory=list)
    id_token_signing_alg_values_supported: list[str] = Field(default_factory=list)
    scopes_supported: list[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] = Field(default_factory=list)
    claims_supported: list[str] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """Result of a query statement.

    The provider keys the result list by entity name, e.g.
    ``{"Invoice": [...], "startPosition": 1, "maxResults": 2}``; the entity
    name is lifted into ``entity`` and the list into ``items``.
    """

    model_config = ConfigDict(populate_by_name=True)

    entity: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    start_position: int | None = Field(default=None, alias="startPosition")
    max_results: int | None = Field(default=None, alias="maxResults")
    total_count: int | None = Field(default=None, alias="totalCount")

    @model_validator(mode="before")
    @classmethod
    def _lift_entity_list(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "items" in data:
            return data
        lifted = dict(data)
        for key, value in data.items():
            if isinstance(value, list) and key[:1].isupper():
                lifted.pop(key)
                lifted["entity"] = key
                lifted["items"] = value
                break
        return lifted
