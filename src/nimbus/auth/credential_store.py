"""Persistent credential store for identity and LLM-provider secrets.

All credentials live in one JSON document, ``auth.json``, under the data
directory (``~/.local/share/nimbus/auth.json`` on Linux, ``~/.nimbus/auth.json``
elsewhere, or ``$NIMBUS_AUTH_FILE``). The file holds a serialised
:class:`~nimbus.models.CredentialFile`: the GitHub identity, one
:class:`~nimbus.models.ProviderCredential` per configured provider, and the
name of the default provider.

Files are written atomically via :func:`~nimbus.config.atomic_write` with
``0o600`` permissions; the directory is created ``0o700``. Nothing is
encrypted beyond that.

The store keeps the last loaded file in memory. It assumes a single writer:
two processes saving concurrently race, and the last write wins.
:meth:`CredentialStore.reload` re-reads the file when another process may
have changed it.

See Also:
    :mod:`nimbus.commands.login` -- the wizard that fills the store.
    :mod:`nimbus.auth.providers` -- provider metadata used for env fallback.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from nimbus.auth.providers import get_provider_info
from nimbus.config import atomic_write, get_auth_file_path
from nimbus.exceptions import NoFileToSaveError, UnknownProviderError
from nimbus.models import (
    CREDENTIAL_FILE_VERSION,
    AuthStatus,
    CredentialFile,
    Identity,
    IdentityStatus,
    ProviderCredential,
    ProviderName,
    ProviderStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_FILE_MODE = 0o600
_DIR_MODE = 0o700

_MASK_PLACEHOLDER = "****"
_NOT_SET = "(not set)"


def _coerce_name(name: Union[ProviderName, str]) -> ProviderName:
    try:
        return ProviderName(name)
    except ValueError:
        known = ", ".join(p.value for p in ProviderName)
        raise UnknownProviderError(
            f"Unknown provider '{name}'. Known providers: {known}"
        ) from None


class CredentialStore:
    """Read/write the credential file and enforce the default-provider rules.

    After every mutation the file satisfies:

    1. No providers means no default provider.
    2. With providers, ``default_provider`` names one of them.
    3. The first provider added, or any provider saved with
       ``is_default=True``, becomes the default.
    4. Removing the default promotes the first remaining provider.

    Construct one store at process start and hand it to whatever needs it;
    the in-memory copy must not be shared between processes.

    Args:
        path: Location of the credential file. Defaults to
            :func:`~nimbus.config.get_auth_file_path`.

    Example::

        store = CredentialStore(tmp_path / "auth.json")
        store.set_provider("openai", ProviderCredential(model="gpt-4o"))
        assert store.get_status().default_provider == ProviderName.OPENAI
    """

    def __init__(self, path: Optional[Union[Path, str]] = None) -> None:
        self._path = Path(path) if path is not None else get_auth_file_path()
        self._file: Optional[CredentialFile] = None

    @property
    def path(self) -> Path:
        """The filesystem path to the credential file."""
        return self._path

    # ------------------------------------------------------------------ #
    # Load / save
    # ------------------------------------------------------------------ #

    def load(self) -> CredentialFile:
        """Return the credential file, reading it from disk on first use.

        A missing file yields a fresh empty :class:`CredentialFile` that is
        *not* written to disk. A file that cannot be parsed or validated is
        replaced in memory by an empty one as well, so the CLI stays usable;
        a warning naming the file is logged so the loss is not silent.

        Returns:
            The cached :class:`CredentialFile`.
        """
        if self._file is not None:
            return self._file

        if not self._path.is_file():
            self._file = CredentialFile.empty()
            return self._file

        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
            loaded = CredentialFile.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning(
                "Ignoring unreadable credential file %s (starting fresh): %s",
                self._path,
                exc,
            )
            loaded = CredentialFile.empty()
        else:
            _normalise(loaded)

        self._file = loaded
        return self._file

    def save(self, file: Optional[CredentialFile] = None) -> None:
        """Persist *file* (or the cached file) with ``0o600`` permissions.

        Stamps ``updated_at`` on a copy, writes pretty-printed JSON
        atomically, and re-applies the file mode afterwards. The copy becomes
        the cached file only once the write succeeded, so a failed save
        leaves the cache matching the disk.

        Args:
            file: The file to write. Defaults to the cached copy.

        Raises:
            NoFileToSaveError: If *file* is ``None`` and nothing is cached.
            OSError: If the directory or file cannot be written.
        """
        to_save = file if file is not None else self._file
        if to_save is None:
            raise NoFileToSaveError("No credential file to save")

        to_save = to_save.model_copy(update={"updated_at": utcnow()})
        text = to_save.model_dump_json(by_alias=True, exclude_none=True, indent=2)

        self._ensure_directory()
        atomic_write(self._path, text + "\n", mode=_FILE_MODE)
        os.chmod(self._path, _FILE_MODE)
        self._file = to_save
        logger.debug("Saved credential file %s", self._path)

    def _draft(self) -> CredentialFile:
        """A deep copy of the cached file for a mutator to edit before saving."""
        return self.load().model_copy(deep=True)

    def reload(self) -> CredentialFile:
        """Discard the cached copy and read the file from disk again."""
        self._file = None
        return self.load()

    def clear(self) -> None:
        """Forget the cached copy and delete the credential file (logout).

        This is a no-op when the file has already been removed.
        """
        self._file = None
        self._path.unlink(missing_ok=True)

    def exists(self) -> bool:
        """Return ``True`` if the file is on disk and has at least one provider.

        A present file with no providers does not count as authenticated.
        """
        if not self._path.is_file():
            return False
        return len(self.load().providers) > 0

    def _ensure_directory(self) -> None:
        directory = self._path.parent
        if not directory.is_dir():
            directory.mkdir(parents=True, exist_ok=True)
            os.chmod(directory, _DIR_MODE)

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_status(self) -> AuthStatus:
        """Summarise identity and providers for display.

        Returns:
            A read-only :class:`~nimbus.models.AuthStatus`; mutating it has
            no effect on the store.
        """
        auth = self.load()
        github = auth.identity.github

        providers = [
            ProviderStatus(
                name=name,
                model=cred.model,
                is_default=auth.default_provider == name,
                validated_at=cred.validated_at,
            )
            for name, cred in auth.providers.items()
        ]

        identity = None
        if github is not None:
            identity = IdentityStatus(
                username=github.username,
                name=github.name,
                authenticated_at=github.authenticated_at,
            )

        return AuthStatus(
            has_identity=github is not None,
            has_providers=bool(providers),
            is_configured=bool(providers),
            identity=identity,
            providers=providers,
            default_provider=auth.default_provider,
        )

    # ------------------------------------------------------------------ #
    # Identity
    # ------------------------------------------------------------------ #

    def set_identity(self, identity: Identity) -> None:
        auth = self._draft()
        auth.identity.github = identity
        self.save(auth)

    def clear_identity(self) -> None:
        auth = self._draft()
        auth.identity.github = None
        self.save(auth)

    def get_identity(self) -> Optional[Identity]:
        return self.load().identity.github

    # ------------------------------------------------------------------ #
    # Providers
    # ------------------------------------------------------------------ #

    def set_provider(
        self, name: Union[ProviderName, str], credential: ProviderCredential
    ) -> None:
        """Add or replace a provider's credential and persist.

        The provider becomes the default when it is the only one configured
        or when ``credential.is_default`` is set.

        Raises:
            UnknownProviderError: If *name* is not a known provider.
        """
        provider = _coerce_name(name)
        auth = self._draft()
        auth.providers[provider] = credential

        if credential.is_default or len(auth.providers) == 1:
            auth.default_provider = provider

        self.save(auth)

    def remove_provider(self, name: Union[ProviderName, str]) -> None:
        """Delete a provider's credential and persist.

        If it was the default, the first remaining provider (in insertion
        order) is promoted; with none left the default is cleared.
        """
        provider = _coerce_name(name)
        auth = self._draft()
        auth.providers.pop(provider, None)

        if auth.default_provider == provider:
            auth.default_provider = next(iter(auth.providers), None)

        self.save(auth)

    def get_provider(self, name: Union[ProviderName, str]) -> Optional[ProviderCredential]:
        return self.load().providers.get(_coerce_name(name))

    def get_providers(self) -> dict[ProviderName, ProviderCredential]:
        return dict(self.load().providers)

    def set_default_provider(self, name: Union[ProviderName, str]) -> None:
        """Make an already-configured provider the default.

        Raises:
            UnknownProviderError: If the provider is not configured.
        """
        provider = _coerce_name(name)
        auth = self._draft()
        if provider not in auth.providers:
            raise UnknownProviderError(f"Provider '{provider.value}' is not configured")
        auth.default_provider = provider
        self.save(auth)

    def get_default_provider(self) -> Optional[ProviderName]:
        return self.load().default_provider

    # ------------------------------------------------------------------ #
    # Secret resolution
    # ------------------------------------------------------------------ #

    def get_api_key(self, name: Union[ProviderName, str]) -> Optional[str]:
        """Resolve a provider's API key.

        Order: the value in the credential file, then the provider's
        environment variable (e.g. ``OPENAI_API_KEY``), then ``None``.
        Providers that take no key (Ollama) always resolve to ``None``.
        """
        provider = _coerce_name(name)
        info = get_provider_info(provider)
        if not info.requires_api_key:
            return None

        credential = self.get_provider(provider)
        if credential is not None and credential.api_key:
            return credential.api_key

        if info.env_var_name:
            return os.environ.get(info.env_var_name) or None
        return None

    def get_base_url(self, name: Union[ProviderName, str]) -> Optional[str]:
        """Resolve a provider's base URL.

        Order: the value in the credential file, then ``OLLAMA_BASE_URL`` for
        providers that support a base URL, then ``None``.
        """
        provider = _coerce_name(name)
        credential = self.get_provider(provider)
        if credential is not None and credential.base_url:
            return credential.base_url

        info = get_provider_info(provider)
        if info.supports_base_url and info.base_url_env_var:
            return os.environ.get(info.base_url_env_var) or None
        return None

    @staticmethod
    def mask_secret(secret: Optional[str]) -> str:
        """Redact a secret for display, e.g. ``"sk-ant-...xyz4"``.

        Secrets of eight characters or fewer all render as ``"****"``;
        longer ones keep their first seven and last four characters. For
        nine to eleven characters those two ends overlap, so the whole
        secret is shown.
        """
        if not secret:
            return _NOT_SET
        if len(secret) <= 8:
            return _MASK_PLACEHOLDER
        return f"{secret[:7]}...{secret[-4:]}"


def _normalise(auth: CredentialFile) -> None:
    """Bring a freshly loaded file up to the current version and rules."""
    if auth.version != CREDENTIAL_FILE_VERSION:
        logger.debug(
            "Migrating credential file from version %s to %s",
            auth.version,
            CREDENTIAL_FILE_VERSION,
        )
        auth.version = CREDENTIAL_FILE_VERSION

    if auth.default_provider not in auth.providers:
        auth.default_provider = next(iter(auth.providers), None)
