"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~nimbus.exceptions.NimbusError` subclass.
Shell wrappers can inspect the exit code to tell a rejected login from a
bad invocation without parsing stderr.

Example::

    $ nimbus login --non-interactive --provider openai
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the API key was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed, was denied, or was cancelled."""

EXIT_INTERRUPTED = 130
"""The user pressed Ctrl-C."""
