"""Authentication building blocks for nimbus.

- :class:`CredentialStore` -- the ``auth.json`` file holding the GitHub
  identity and LLM-provider credentials.
- :class:`DeviceAuthFlow` -- OAuth2 device authorization grant client.
- :func:`complete_github_auth` -- turns a GitHub token into an identity.
- :func:`validate_provider` -- checks a provider key against its API.

Typical usage::

    from nimbus.auth import CredentialStore

    store = CredentialStore()
    key = store.get_api_key("anthropic")
"""

from nimbus.auth.credential_store import CredentialStore
from nimbus.auth.device_flow import (
    CancellationToken,
    DeviceAuthFlow,
    PollResult,
    PollStatus,
    cancel_on_interrupt,
)
from nimbus.auth.github import complete_github_auth
from nimbus.auth.providers import PROVIDER_REGISTRY, get_provider_info, validate_provider

__all__ = [
    "CancellationToken",
    "CredentialStore",
    "DeviceAuthFlow",
    "PROVIDER_REGISTRY",
    "PollResult",
    "PollStatus",
    "complete_github_auth",
    "get_provider_info",
    "cancel_on_interrupt",
    "validate_provider",
]
