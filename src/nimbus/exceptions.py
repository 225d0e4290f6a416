"""Exception hierarchy for nimbus.

All exceptions inherit from :class:`NimbusError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`nimbus.exit_codes`.
The top-level error handler in :func:`nimbus.app.main` catches
``NimbusError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    NimbusError (exit 1)
    +-- AuthError                    (exit 3)
    |   +-- DeviceFlowError
    |       +-- NotInitiatedError
    |       +-- ExpiredError
    |       +-- DeniedError
    |       +-- DeviceFlowCancelledError
    |       +-- UnknownDeviceFlowError
    +-- ConfigError                  (exit 1)
        +-- UnknownProviderError
        +-- NoFileToSaveError

A ``slow_down`` answer from the token endpoint has no exception: it is
the polling status :attr:`~nimbus.auth.device_flow.PollStatus.SLOW_DOWN`.
"""

from nimbus.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_GENERIC_FAILURE,
)


class NimbusError(Exception):
    """Base exception for all nimbus errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`nimbus.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class AuthError(NimbusError):
    """Raised when authentication fails (rejected key, unreachable identity provider)."""

    exit_code = EXIT_AUTH_FAILURE


class DeviceFlowError(AuthError):
    """Raised when the OAuth device authorization flow cannot continue.

    Also raised directly for transport failures and malformed responses
    from the device-code or token endpoints.
    """


class NotInitiatedError(DeviceFlowError):
    """Raised when polling is attempted before a device code was requested."""


class ExpiredError(DeviceFlowError):
    """Raised when the device code lifetime has elapsed."""


class DeniedError(DeviceFlowError):
    """Raised when the user rejected the authorization request."""


class DeviceFlowCancelledError(DeviceFlowError):
    """Raised when a cancellation token fires while waiting for authorization."""


class UnknownDeviceFlowError(DeviceFlowError):
    """Raised for token-endpoint errors outside the RFC 8628 vocabulary.

    The message is the server's ``error_description`` when one was sent.
    """


class ConfigError(NimbusError):
    """Raised for configuration and credential-file problems."""

    exit_code = EXIT_GENERIC_FAILURE


class UnknownProviderError(ConfigError):
    """Raised when a provider name is not configured (or not known at all)."""


class NoFileToSaveError(ConfigError):
    """Raised when :meth:`CredentialStore.save` has nothing to write."""
