"""``nimbus login`` -- first-run setup wizard.

Walks the user through an optional GitHub sign-in (device flow) and the
configuration of one or more LLM providers, persisting everything to the
:class:`~nimbus.auth.credential_store.CredentialStore`.

Interactive steps, in order:

1. ``welcome`` -- show existing providers; offer to reconfigure.
2. ``github-identity`` -- optional; keep or obtain a GitHub identity.
3. ``providers-loop`` -- add providers until the user stops.
4. ``set-default`` -- only when more than one provider was configured.
5. ``complete`` -- print a summary with masked keys.

With ``--non-interactive`` a single provider is configured from
``--provider``/``--api-key``/``--model`` (or the provider's environment
variable) without any prompts.

Usage::

    nimbus login
    nimbus login --non-interactive --provider anthropic --api-key sk-ant-...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

import typer

from nimbus.auth.credential_store import CredentialStore
from nimbus.auth.device_flow import CancellationToken, DeviceAuthFlow, cancel_on_interrupt
from nimbus.auth.github import complete_github_auth
from nimbus.auth.providers import (
    DEFAULT_OLLAMA_URL,
    get_default_model,
    get_provider_info,
    get_provider_names,
    validate_provider,
)
from nimbus.exceptions import AuthError
from nimbus.exit_codes import EXIT_AUTH_FAILURE
from nimbus.models import (
    ConfiguredProvider,
    Identity,
    LoginWizardContext,
    ProviderCredential,
    ProviderName,
    ValidationResult,
    utcnow,
)
from nimbus.output import error, info, panel, section, success, suggest, warning
from nimbus.wizard.engine import (
    StepFailure,
    StepResult,
    StepSkipRemaining,
    StepSuccess,
    WizardEngine,
    WizardEvent,
    WizardResult,
    WizardStep,
)
from nimbus.wizard.prompts import Prompter

logger = logging.getLogger(__name__)


@dataclass
class LoginServices:
    """Collaborators the login steps depend on.

    Everything that touches the terminal, the network, or the disk is
    reachable from here so tests can replace it.
    """

    store: CredentialStore
    prompter: Prompter
    device_flow_factory: Callable[[], DeviceAuthFlow] = DeviceAuthFlow
    fetch_identity: Callable[[str], Identity] = complete_github_auth
    validate: Callable[..., ValidationResult] = validate_provider
    cancel: Optional[CancellationToken] = None


class LoginWizard:
    """The ``nimbus login`` steps bound to a set of :class:`LoginServices`."""

    title = "nimbus login"
    description = "Set up authentication and LLM providers"

    def __init__(self, services: LoginServices) -> None:
        self.services = services

    @property
    def store(self) -> CredentialStore:
        return self.services.store

    @property
    def prompter(self) -> Prompter:
        return self.services.prompter

    def steps(self) -> list[WizardStep[LoginWizardContext]]:
        return [
            WizardStep(id="welcome", title="Welcome", execute=self.welcome),
            WizardStep(
                id="github-identity",
                title="GitHub Identity",
                execute=self.github_identity,
                can_skip=True,
                condition=lambda ctx: not ctx.skip_github,
            ),
            WizardStep(
                id="providers-loop",
                title="LLM Provider Configuration",
                execute=self.providers_loop,
            ),
            WizardStep(
                id="set-default",
                title="Set Default Provider",
                execute=self.set_default,
                condition=lambda ctx: len(ctx.configured_providers) > 1,
            ),
            WizardStep(id="complete", title="Setup Complete", execute=self.complete),
        ]

    def run(self, skip_github: bool = False) -> WizardResult[LoginWizardContext]:
        engine = WizardEngine(self.steps(), title=self.title, description=self.description)
        initial = LoginWizardContext(skip_github=skip_github or None)
        return engine.run(initial, on_event=_log_event)

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    def welcome(self, ctx: LoginWizardContext) -> StepResult:
        panel(
            "Welcome to Nimbus",
            [
                "AI-Powered Cloud Engineering Agent",
                "",
                "Let's get you set up with authentication",
                "and LLM provider configuration.",
            ],
        )

        status = self.store.get_status()
        if not status.has_providers:
            return StepSuccess()

        info("You already have configured providers:")
        for provider in status.providers:
            icon = "★" if provider.is_default else "•"
            info(f"    {icon} {provider.name.value} ({provider.model})")

        if not self.prompter.confirm("Do you want to reconfigure?", default=False):
            return StepSkipRemaining({"cancelled": True})

        for provider in status.providers:
            self.store.remove_provider(provider.name)
        info("Cleared existing provider configurations")
        return StepSuccess()

    def github_identity(self, ctx: LoginWizardContext) -> StepResult:
        section("GitHub Identity (Optional)")

        existing = self.store.get_identity()
        if existing is not None:
            info(f"Currently signed in as: {existing.username}")
            if self.prompter.confirm("Keep existing GitHub identity?", default=True):
                return StepSuccess({"github_identity": existing})

        if not self.prompter.confirm("Sign in with GitHub?", default=True):
            info("Skipping GitHub sign-in")
            return StepSuccess({"skip_github": True})

        info("Starting GitHub Device Flow authentication...")
        try:
            with self.services.device_flow_factory() as flow:
                code = flow.initiate()
                panel(
                    "GitHub Authorization",
                    [
                        f"Open {code.verification_uri} in your browser",
                        "and enter this code:",
                        "",
                        f"    {code.user_code}",
                        "",
                        "Waiting for authorization...",
                    ],
                    border_style="yellow",
                )
                info("Press Ctrl-C to stop waiting.")
                with cancel_on_interrupt(self.services.cancel or CancellationToken()) as cancel:
                    token = flow.wait_for_authorization(cancel=cancel)
            success("Authorization successful")

            identity = self.services.fetch_identity(token)
        except AuthError as exc:
            error(f"GitHub authentication failed: {exc}")
            if self.prompter.confirm("Continue without GitHub sign-in?", default=True):
                return StepSuccess({"skip_github": True})
            return StepFailure(str(exc))

        suffix = f" ({identity.name})" if identity.name else ""
        success(f"Signed in as {identity.username}{suffix}")
        self.store.set_identity(identity)
        return StepSuccess({"github_identity": identity})

    def providers_loop(self, ctx: LoginWizardContext) -> StepResult:
        section("LLM Provider Configuration")
        info("Configure at least one LLM provider to use Nimbus.")

        configured: list[ConfiguredProvider] = list(ctx.configured_providers)

        while True:
            done = {p.name for p in configured}
            choices = [
                (name, ("✓ " if name in done else "") + get_provider_info(name).display_name)
                for name in get_provider_names()
            ]
            selected = self.prompter.select("Select an LLM provider:", choices)

            entry = self._configure_provider(selected)
            if entry is not None:
                configured = [p for p in configured if p.name != entry.name] + [entry]
                prompt = "Add another LLM provider?"
            elif configured:
                prompt = "Configure a different provider?"
            else:
                prompt = "Try a different provider?"

            if not self.prompter.confirm(prompt, default=False):
                break

        if not configured:
            return StepFailure("At least one provider is required")
        return StepSuccess({"configured_providers": configured})

    def set_default(self, ctx: LoginWizardContext) -> StepResult:
        section("Set Default Provider")

        choices = [
            (p.name, f"{get_provider_info(p.name).display_name} (model: {p.model})")
            for p in ctx.configured_providers
        ]
        selected = self.prompter.select("Select your default LLM provider:", choices)
        self.store.set_default_provider(selected)
        return StepSuccess({"default_provider": selected})

    def complete(self, ctx: LoginWizardContext) -> StepResult:
        lines: list[str] = []

        identity = ctx.github_identity
        if identity is not None:
            suffix = f" ({identity.name})" if identity.name else ""
            lines.append(f"Identity: {identity.username}{suffix}")
        else:
            lines.append("Identity: (not configured)")
        lines.append("")

        default = ctx.default_provider or self.store.get_default_provider()
        lines.append("Providers:")
        for provider in ctx.configured_providers:
            display = get_provider_info(provider.name).display_name
            marker = " (default)" if provider.name == default else ""
            key = (
                CredentialStore.mask_secret(provider.api_key)
                if provider.api_key
                else "(no key needed)"
            )
            lines.append(f"  • {display}{marker}")
            lines.append(f"    Key: {key}")
            lines.append(f"    Model: {provider.model}")

        panel("✓ Setup Complete", lines, border_style="green")
        return StepSuccess({"completed": True})

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _configure_provider(self, name: ProviderName) -> Optional[ConfiguredProvider]:
        """Collect, validate, and save one provider. ``None`` if the user gave up."""
        provider_info = get_provider_info(name)
        api_key: Optional[str] = None
        base_url: Optional[str] = None

        if provider_info.requires_api_key:
            if provider_info.api_key_url:
                info(f"Get your key at: {provider_info.api_key_url}")

            env_key = os.environ.get(provider_info.env_var_name or "")
            if env_key:
                info(f"Found {provider_info.env_var_name} in environment")
                if self.prompter.confirm("Use API key from environment variable?", default=True):
                    api_key = env_key

            if not api_key:
                api_key = self.prompter.text(
                    f"Paste your {provider_info.display_name} API key", secret=True
                )
                if not api_key:
                    error("API key is required")
                    return None

        if provider_info.supports_base_url:
            default_url = (
                self.store.get_base_url(name) or provider_info.default_base_url or DEFAULT_OLLAMA_URL
            )
            if self.prompter.confirm(
                f"Use custom Ollama URL? (default: {default_url})", default=False
            ):
                base_url = self.prompter.text("Enter Ollama base URL", default=default_url)
            else:
                base_url = default_url

        info("Validating credentials...")
        result = self.services.validate(name, api_key=api_key, base_url=base_url)
        if not result.valid:
            error(f"Validation failed: {result.error}")
            info(f"Skipping {provider_info.display_name}")
            return None
        success("Credentials validated")

        model = self.prompter.select(
            f"Select default model for {provider_info.display_name}:",
            [
                (m.id, m.name + (" (default)" if m.is_default else ""))
                for m in provider_info.models
            ],
            default=_default_model_index(name),
        )

        self.store.set_provider(
            name,
            ProviderCredential(
                api_key=api_key,
                base_url=base_url,
                model=model,
                validated_at=utcnow(),
            ),
        )
        success(f"{provider_info.display_name} configured successfully")
        return ConfiguredProvider(name=name, api_key=api_key, base_url=base_url, model=model)


def _default_model_index(name: ProviderName) -> int:
    default_id = get_default_model(name)
    for i, model in enumerate(get_provider_info(name).models):
        if model.id == default_id:
            return i
    return 0


def _log_event(event: WizardEvent) -> None:
    logger.debug("Wizard event %s step=%s", event.type.value, event.step_id)


# ------------------------------------------------------------------ #
# Non-interactive mode
# ------------------------------------------------------------------ #


def run_non_interactive(
    store: CredentialStore,
    provider: Optional[str],
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    validate: Optional[Callable[..., ValidationResult]] = None,
) -> bool:
    """Configure one provider from options alone. Returns ``True`` on success.

    *validate* defaults to :func:`~nimbus.auth.providers.validate_provider`.
    """
    validate = validate or validate_provider
    if not provider:
        error("Provider is required in non-interactive mode (--provider)")
        return False

    try:
        name = ProviderName(provider)
    except ValueError:
        error(f"Unknown provider: {provider}")
        suggest("Known providers: " + ", ".join(p.value for p in ProviderName))
        return False

    provider_info = get_provider_info(name)
    if provider_info.requires_api_key:
        api_key = api_key or os.environ.get(provider_info.env_var_name or "") or None
        if not api_key:
            error(
                f"API key is required. Set --api-key or "
                f"{provider_info.env_var_name} environment variable."
            )
            return False
    else:
        api_key = None

    if provider_info.supports_base_url:
        base_url = base_url or store.get_base_url(name) or provider_info.default_base_url
    else:
        base_url = None

    info("Validating credentials...")
    result = validate(name, api_key=api_key, base_url=base_url)
    if not result.valid:
        error(f"Validation failed: {result.error}")
        return False
    success("Credentials validated")

    chosen = model or get_default_model(name)
    store.set_provider(
        name,
        ProviderCredential(api_key=api_key, base_url=base_url, model=chosen, validated_at=utcnow()),
    )
    success(f"{provider_info.display_name} configured with model {chosen}")
    return True


# ------------------------------------------------------------------ #
# Command
# ------------------------------------------------------------------ #


def login_command(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(
        None, "--provider", help="LLM provider to configure (non-interactive)."
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", help="Provider API key (falls back to its env var)."
    ),
    model: Optional[str] = typer.Option(None, "--model", help="Default model for the provider."),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Server URL for providers that take one (Ollama)."
    ),
    skip_github: bool = typer.Option(False, "--skip-github", help="Skip GitHub sign-in."),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Configure from options without prompting."
    ),
) -> None:
    """Set up GitHub identity and LLM providers.

    Raises:
        typer.Exit: With :data:`~nimbus.exit_codes.EXIT_AUTH_FAILURE` when
            login fails or is cancelled.

    Example::

        nimbus login
        nimbus login --non-interactive --provider openai --model gpt-4o
    """
    store: CredentialStore = ctx.obj["store"]
    no_input = bool(ctx.obj.get("no_input"))
    logger.info("Starting login wizard")

    if non_interactive or no_input:
        if not run_non_interactive(store, provider, api_key, model, base_url):
            raise typer.Exit(code=EXIT_AUTH_FAILURE)
        return

    wizard = LoginWizard(LoginServices(store=store, prompter=Prompter()))
    try:
        result = wizard.run(skip_github=skip_github)
    except KeyboardInterrupt:
        warning("Login cancelled")
        raise typer.Exit(code=EXIT_AUTH_FAILURE) from None

    if result.success and result.context.completed:
        suggest("Run `nimbus auth status` to review your configuration.")
        return
    if result.context.cancelled:
        warning("Login cancelled")
    else:
        error(f"Login failed: {result.error or 'Unknown error'}")
    raise typer.Exit(code=EXIT_AUTH_FAILURE)
