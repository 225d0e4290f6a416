"""Canonical Pydantic models shared across all nimbus modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Persisted credential models** -- serialised as ``auth.json`` by
:class:`~nimbus.auth.credential_store.CredentialStore`:
    :class:`ProviderName`, :class:`Identity`, :class:`IdentitySlots`,
    :class:`ProviderCredential`, and :class:`CredentialFile`.

**Read-only projections and metadata** -- built for display or lookup, never
written back:
    :class:`AuthStatus`, :class:`ProviderStatus`, :class:`IdentityStatus`,
    :class:`ModelInfo`, :class:`ProviderInfo`, and :class:`ValidationResult`.

**Transient flow state** -- lives only in memory during ``nimbus login``:
    :class:`DeviceCodeSession`, :class:`DeviceCodeResponse`,
    :class:`ConfiguredProvider`, and :class:`LoginWizardContext`.

Persisted models use camelCase JSON keys (``defaultProvider``,
``createdAt``) and accept either camelCase or snake_case on input.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CREDENTIAL_FILE_VERSION = 1
"""Schema version written to every credential file."""


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Providers ---


class ProviderName(str, enum.Enum):
    """The closed set of LLM backends the credential store understands.

    ``OLLAMA`` runs locally: it needs no API key but accepts a base URL.
    Every other provider requires an API key and ignores base URL.
    """

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"


# --- Persisted credential models ---


class Identity(_CamelModel):
    """A signed-in GitHub identity, including its bearer token."""

    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    access_token: str
    authenticated_at: datetime = Field(default_factory=utcnow)


class IdentitySlots(_CamelModel):
    """At most one identity per supported identity provider."""

    github: Optional[Identity] = None


class ProviderCredential(_CamelModel):
    """Model, key, and endpoint configuration for one LLM provider.

    ``is_default`` is only a hint consumed by
    :meth:`~nimbus.auth.credential_store.CredentialStore.set_provider` at
    write time. After later mutations it may disagree with
    :attr:`CredentialFile.default_provider`, which is authoritative.
    """

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str
    validated_at: Optional[datetime] = None
    is_default: Optional[bool] = None


class CredentialFile(_CamelModel):
    """The whole ``auth.json`` document.

    Attributes:
        version: Schema version, normalised to
            :data:`CREDENTIAL_FILE_VERSION` on load.
        identity: Identity slots (currently only GitHub).
        providers: Provider credentials keyed by provider name.
        default_provider: The provider used when none is specified.
            ``None`` exactly when ``providers`` is empty.
        created_at: When the file was first created.
        updated_at: Rewritten on every save.
    """

    version: int = CREDENTIAL_FILE_VERSION
    identity: IdentitySlots = Field(default_factory=IdentitySlots)
    providers: dict[ProviderName, ProviderCredential] = Field(default_factory=dict)
    default_provider: Optional[ProviderName] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("identity", mode="before")
    @classmethod
    def _null_identity(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("providers", mode="before")
    @classmethod
    def _null_providers(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def empty(cls) -> CredentialFile:
        """Return a fresh file with no identity or providers."""
        now = utcnow()
        return cls(created_at=now, updated_at=now)


# --- Read-only projections ---


class IdentityStatus(BaseModel):
    provider: str = "github"
    username: str
    name: Optional[str] = None
    authenticated_at: datetime


class ProviderStatus(BaseModel):
    name: ProviderName
    model: str
    is_default: bool
    validated_at: Optional[datetime] = None


class AuthStatus(BaseModel):
    """Display-only summary of what the credential file holds."""

    has_identity: bool
    has_providers: bool
    is_configured: bool
    identity: Optional[IdentityStatus] = None
    providers: list[ProviderStatus] = Field(default_factory=list)
    default_provider: Optional[ProviderName] = None


class ModelInfo(BaseModel):
    id: str
    name: str
    is_default: bool = False


class ProviderInfo(BaseModel):
    """Static metadata describing how to configure a provider."""

    name: ProviderName
    display_name: str
    description: str
    env_var_name: Optional[str] = None
    api_key_url: Optional[str] = None
    requires_api_key: bool = True
    supports_base_url: bool = False
    default_base_url: Optional[str] = None
    base_url_env_var: Optional[str] = None
    models: list[ModelInfo]


class ValidationResult(BaseModel):
    """Outcome of a lightweight credential check against a provider API."""

    valid: bool
    error: Optional[str] = None
    models: list[str] = Field(default_factory=list)


# --- Device authorization ---


class DeviceCodeSession(BaseModel):
    """In-memory state of an initiated device authorization.

    ``expires_at`` is expressed on the flow's clock (monotonic seconds by
    default), not wall-clock time. Never persisted.
    """

    device_code: str
    user_code: str
    verification_uri: str
    interval: float
    expires_at: float


class DeviceCodeResponse(BaseModel):
    """The user-facing half of a device authorization: what to show."""

    user_code: str
    verification_uri: str
    expires_in: int
    interval: float


# --- Login wizard ---


class ConfiguredProvider(BaseModel):
    name: ProviderName
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str


class LoginWizardContext(BaseModel):
    """Context record threaded through the ``nimbus login`` wizard.

    Frozen: steps return patches and the engine derives a new context with
    :func:`~nimbus.wizard.engine.merge`.
    """

    model_config = ConfigDict(frozen=True)

    skip_github: Optional[bool] = None
    github_identity: Optional[Identity] = None
    configured_providers: list[ConfiguredProvider] = Field(default_factory=list)
    default_provider: Optional[ProviderName] = None
    completed: Optional[bool] = None
    cancelled: Optional[bool] = None
