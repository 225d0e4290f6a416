"""Auth commands -- inspect and edit stored credentials.

Provides the ``nimbus auth`` sub-command group plus the top-level
``nimbus logout`` command. All of them operate on the
:class:`~nimbus.auth.credential_store.CredentialStore` placed in
``ctx.obj["store"]`` by :func:`nimbus.app.main_callback`.

Typical workflow::

    nimbus auth status              # who am I, which providers
    nimbus auth list                # providers with masked keys
    nimbus auth set-default openai  # switch the default provider
    nimbus auth remove google       # drop one provider
    nimbus logout                   # delete everything
"""

from __future__ import annotations

import typer

from nimbus.auth.credential_store import CredentialStore
from nimbus.auth.providers import get_provider_info
from nimbus.exit_codes import EXIT_INVALID_USAGE
from nimbus.exceptions import UnknownProviderError
from nimbus.output import error, get_output, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


def _store(ctx: typer.Context) -> CredentialStore:
    return ctx.obj["store"]


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the signed-in identity and configured providers.

    Example::

        nimbus auth status
        nimbus --json auth status
    """
    status = _store(ctx).get_status()

    if not status.has_identity and not status.has_providers:
        info("Not logged in.")
        suggest("Get started: nimbus login")
        return

    identity = status.identity
    if identity is not None:
        name = f" ({identity.name})" if identity.name else ""
        who = f"{identity.username}{name}"
        since = identity.authenticated_at.isoformat()
    else:
        who, since = "(not configured)", "-"

    rows = [
        ["Identity", who],
        ["Signed in", since],
        ["Default provider", status.default_provider.value if status.default_provider else "-"],
    ]
    for provider in status.providers:
        marker = " (default)" if provider.is_default else ""
        rows.append([f"Provider {provider.name.value}", f"{provider.model}{marker}"])

    get_output().print_table(["Field", "Value"], rows, title="Authentication Status")

    if not status.is_configured:
        suggest("Configure a provider: nimbus login")


@auth_app.command("list")
def auth_list(ctx: typer.Context) -> None:
    """List configured providers with masked keys and where each key comes from.

    The key source is ``stored`` (credential file), ``env`` (provider
    environment variable), or ``none``.
    """
    store = _store(ctx)
    providers = store.get_providers()
    if not providers:
        info("No providers configured.")
        suggest("Add one: nimbus login")
        return

    default = store.get_default_provider()
    rows: list[list[str]] = []
    for name, credential in providers.items():
        provider_info = get_provider_info(name)
        if not provider_info.requires_api_key:
            key, source = "(no key needed)", "-"
        elif credential.api_key:
            key, source = CredentialStore.mask_secret(credential.api_key), "stored"
        else:
            resolved = store.get_api_key(name)
            key = CredentialStore.mask_secret(resolved)
            source = "env" if resolved else "none"
        rows.append(
            [
                name.value,
                credential.model,
                key,
                source,
                store.get_base_url(name) or "-",
                "yes" if name == default else "",
            ]
        )

    get_output().print_table(
        ["Provider", "Model", "Key", "Source", "Base URL", "Default"],
        rows,
        title="Configured Providers",
    )


@auth_app.command("set-default")
def auth_set_default(
    ctx: typer.Context,
    provider: str = typer.Argument(help="Configured provider to make the default."),
) -> None:
    """Make a configured provider the default.

    Raises:
        typer.Exit: With code 2 if the provider is unknown or not configured.
    """
    try:
        _store(ctx).set_default_provider(provider)
    except UnknownProviderError as exc:
        error(str(exc))
        suggest("See configured providers: nimbus auth list")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    success(f'Default provider set to "{provider}".')


@auth_app.command("remove")
def auth_remove(
    ctx: typer.Context,
    provider: str = typer.Argument(help="Provider to remove."),
) -> None:
    """Remove one provider's credentials.

    If it was the default, the next configured provider takes over. Asks
    for confirmation unless ``--force`` is active.

    Raises:
        typer.Exit: With code 2 if the provider name is unknown.
    """
    store = _store(ctx)
    try:
        credential = store.get_provider(provider)
    except UnknownProviderError as exc:
        error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    if credential is None:
        info(f'Provider "{provider}" is not configured.')
        return

    force = ctx.obj.get("force", False)
    if not force and not typer.confirm(f'Remove credentials for "{provider}"?', err=True):
        info("Cancelled.")
        raise typer.Exit()

    store.remove_provider(provider)
    success(f'Removed "{provider}".')
    new_default = store.get_default_provider()
    if new_default is not None:
        info(f"Default provider: {new_default.value}")


def logout_command(ctx: typer.Context) -> None:
    """Delete the stored identity and all provider credentials.

    Asks for confirmation unless ``--force`` is active.

    Example::

        nimbus logout
        nimbus --force logout
    """
    store = _store(ctx)
    if not store.path.exists():
        info("Not logged in.")
        return

    force = ctx.obj.get("force", False)
    if not force and not typer.confirm("Remove all stored credentials?", err=True):
        info("Cancelled.")
        raise typer.Exit()

    store.clear()
    success("Logged out. Stored credentials removed.")
