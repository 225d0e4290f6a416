"""nimbus -- AI-powered cloud engineering agent (authentication core).

This package holds the first-run setup of the ``nimbus`` CLI: a GitHub
sign-in over the OAuth device flow, LLM provider configuration, and the
local credential file both are saved to.

Typical workflow::

    nimbus login          # interactive setup wizard
    nimbus auth status    # review what is configured
    nimbus logout         # remove stored credentials

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware data directory and credential-file resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    auth: Credential store, device flow, provider validation.
    wizard: Sequential step engine and terminal prompts.
"""

__version__ = "0.1.0"
