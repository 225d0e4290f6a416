"""Provider registry and credential validation.

:data:`PROVIDER_REGISTRY` holds static metadata for every
:class:`~nimbus.models.ProviderName`: display strings, where to get a key,
which environment variable holds it, and the selectable models.

:func:`validate_provider` makes one cheap authenticated request per
provider to confirm that a key (or, for Ollama, a base URL) works. It
never raises for network or HTTP failures; those come back as an invalid
:class:`~nimbus.models.ValidationResult` with a readable error.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import httpx

from nimbus.models import ModelInfo, ProviderInfo, ProviderName, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"

_TIMEOUT = 15.0

PROVIDER_REGISTRY: dict[ProviderName, ProviderInfo] = {
    ProviderName.ANTHROPIC: ProviderInfo(
        name=ProviderName.ANTHROPIC,
        display_name="Anthropic (Claude)",
        description="Claude Sonnet 4, Opus 4, Haiku 4",
        env_var_name="ANTHROPIC_API_KEY",
        api_key_url="https://console.anthropic.com/settings/keys",
        models=[
            ModelInfo(id="claude-sonnet-4-20250514", name="Claude Sonnet 4", is_default=True),
            ModelInfo(id="claude-opus-4-20250514", name="Claude Opus 4"),
            ModelInfo(id="claude-haiku-4-20250514", name="Claude Haiku 4"),
        ],
    ),
    ProviderName.OPENAI: ProviderInfo(
        name=ProviderName.OPENAI,
        display_name="OpenAI (GPT)",
        description="GPT-4o, GPT-4o-mini",
        env_var_name="OPENAI_API_KEY",
        api_key_url="https://platform.openai.com/api-keys",
        models=[
            ModelInfo(id="gpt-4o", name="GPT-4o", is_default=True),
            ModelInfo(id="gpt-4o-mini", name="GPT-4o Mini"),
            ModelInfo(id="gpt-4-turbo", name="GPT-4 Turbo"),
        ],
    ),
    ProviderName.GOOGLE: ProviderInfo(
        name=ProviderName.GOOGLE,
        display_name="Google (Gemini)",
        description="Gemini 2.0 Flash, Gemini 1.5 Pro",
        env_var_name="GOOGLE_API_KEY",
        api_key_url="https://aistudio.google.com/app/apikey",
        models=[
            ModelInfo(id="gemini-2.0-flash", name="Gemini 2.0 Flash", is_default=True),
            ModelInfo(id="gemini-1.5-pro", name="Gemini 1.5 Pro"),
            ModelInfo(id="gemini-1.5-flash", name="Gemini 1.5 Flash"),
        ],
    ),
    ProviderName.OPENROUTER: ProviderInfo(
        name=ProviderName.OPENROUTER,
        display_name="OpenRouter",
        description="Access multiple models via OpenRouter",
        env_var_name="OPENROUTER_API_KEY",
        api_key_url="https://openrouter.ai/keys",
        models=[
            ModelInfo(
                id="anthropic/claude-sonnet-4",
                name="Claude Sonnet 4 (via OpenRouter)",
                is_default=True,
            ),
            ModelInfo(id="openai/gpt-4o", name="GPT-4o (via OpenRouter)"),
            ModelInfo(id="google/gemini-pro", name="Gemini Pro (via OpenRouter)"),
            ModelInfo(id="meta-llama/llama-3.1-405b-instruct", name="Llama 3.1 405B"),
        ],
    ),
    ProviderName.OLLAMA: ProviderInfo(
        name=ProviderName.OLLAMA,
        display_name="Ollama (Local)",
        description="Local models: Llama 3.2, CodeLlama, Mistral",
        requires_api_key=False,
        supports_base_url=True,
        default_base_url=DEFAULT_OLLAMA_URL,
        base_url_env_var="OLLAMA_BASE_URL",
        models=[
            ModelInfo(id="llama3.2", name="Llama 3.2", is_default=True),
            ModelInfo(id="codellama", name="CodeLlama"),
            ModelInfo(id="mistral", name="Mistral"),
            ModelInfo(id="deepseek-coder", name="DeepSeek Coder"),
        ],
    ),
}


def get_provider_info(name: Union[ProviderName, str]) -> ProviderInfo:
    """Return registry metadata for *name*.

    Raises:
        ValueError: If *name* is not a :class:`~nimbus.models.ProviderName`.
    """
    return PROVIDER_REGISTRY[ProviderName(name)]


def get_provider_names() -> list[ProviderName]:
    return list(PROVIDER_REGISTRY)


def get_default_model(name: Union[ProviderName, str]) -> str:
    """Return the id of the provider's default model (its first model otherwise)."""
    info = get_provider_info(name)
    for model in info.models:
        if model.is_default:
            return model.id
    return info.models[0].id


# --- Validation ---


def validate_provider(
    name: Union[ProviderName, str],
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> ValidationResult:
    """Check that a provider accepts the given credentials.

    Args:
        name: The provider to check.
        api_key: API key for providers that require one.
        base_url: Server URL for providers that support one (Ollama).
        client: Optional pre-configured client (tests inject a mock
            transport). A temporary client is created and closed otherwise.

    Returns:
        A :class:`~nimbus.models.ValidationResult`. Network and HTTP errors
        are reported through ``error`` rather than raised.
    """
    provider = ProviderName(name)
    info = PROVIDER_REGISTRY[provider]

    if info.requires_api_key and not api_key:
        return ValidationResult(valid=False, error="API key is required")

    owns_client = client is None
    http = client if client is not None else httpx.Client(timeout=_TIMEOUT)
    try:
        if provider == ProviderName.ANTHROPIC:
            return _validate_anthropic(http, api_key or "")
        if provider == ProviderName.OPENAI:
            return _validate_bearer_models(http, api_key or "", "https://api.openai.com/v1/models")
        if provider == ProviderName.GOOGLE:
            return _validate_google(http, api_key or "")
        if provider == ProviderName.OPENROUTER:
            return _validate_bearer_models(
                http, api_key or "", "https://openrouter.ai/api/v1/models"
            )
        return _validate_ollama(http, base_url or info.default_base_url or DEFAULT_OLLAMA_URL)
    except httpx.HTTPError as exc:
        logger.debug("Validation request for %s failed: %s", provider.value, exc)
        return ValidationResult(valid=False, error=f"Connection failed: {exc}")
    except (ValueError, AttributeError) as exc:
        # Body was not the JSON object the endpoint documents.
        return ValidationResult(valid=False, error=f"Unexpected response: {exc}")
    finally:
        if owns_client:
            http.close()


def _api_error(response: httpx.Response) -> ValidationResult:
    return ValidationResult(
        valid=False, error=f"API error: {response.status_code} - {response.text}"
    )


def _validate_anthropic(http: httpx.Client, api_key: str) -> ValidationResult:
    """POST a one-token message; a 400 ``invalid_request_error`` still proves the key."""
    response = http.post(
        "https://api.anthropic.com/v1/messages",
        headers={
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
        },
        json={
            "model": "claude-haiku-4-20250514",
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        },
    )
    if response.is_success:
        return ValidationResult(valid=True)
    if response.status_code == 401:
        return ValidationResult(valid=False, error="Invalid API key")
    if response.status_code == 400:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and (body.get("error") or {}).get("type") == "invalid_request_error":
            return ValidationResult(valid=True)
    return _api_error(response)


def _validate_bearer_models(http: httpx.Client, api_key: str, url: str) -> ValidationResult:
    """GET an OpenAI-style ``/models`` listing with a bearer key."""
    response = http.get(url, headers={"Authorization": f"Bearer {api_key}"})
    if response.is_success:
        data = response.json().get("data") or []
        return ValidationResult(valid=True, models=[m["id"] for m in data if "id" in m])
    if response.status_code == 401:
        return ValidationResult(valid=False, error="Invalid API key")
    return _api_error(response)


def _validate_google(http: httpx.Client, api_key: str) -> ValidationResult:
    response = http.get(
        "https://generativelanguage.googleapis.com/v1/models",
        params={"key": api_key},
    )
    if response.is_success:
        data = response.json().get("models") or []
        return ValidationResult(valid=True, models=[m["name"] for m in data if "name" in m])
    if response.status_code in (400, 403):
        return ValidationResult(valid=False, error="Invalid API key")
    return _api_error(response)


def _validate_ollama(http: httpx.Client, base_url: str) -> ValidationResult:
    """GET ``/api/tags`` on the local server; no key involved."""
    response = http.get(f"{base_url.rstrip('/')}/api/tags")
    if response.is_success:
        data = response.json().get("models") or []
        return ValidationResult(valid=True, models=[m["name"] for m in data if "name" in m])
    return _api_error(response)
