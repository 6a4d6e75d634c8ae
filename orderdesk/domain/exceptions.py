"""Domain-level exceptions shared across the desk."""

from __future__ import annotations


class DeskError(Exception):
    """Base exception for desk failures that map to a stable error kind."""

    kind: str = "DeskError"
    retriable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        retriable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        if retriable is not None:
            self.retriable = retriable

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.message} (code={self.code})" if self.code is not None else self.message


class ValidationError(DeskError):
    """Parameters are malformed or below the minimum notional."""

    kind = "ValidationError"


class NotFoundError(DeskError):
    """Unknown order token, watcher or wallet."""

    kind = "NotFoundError"


class ConflictError(DeskError):
    """The request collides with current state (order in flight, wallet exists)."""

    kind = "ConflictError"


class ExternalServiceError(DeskError):
    """The venue or price source failed; ``message`` carries the provider text."""

    kind = "ExternalServiceError"


class ExternalTimeoutError(ExternalServiceError):
    """An external call exceeded its time budget."""

    retriable = True


class ResponseParseError(ExternalServiceError):
    """An external response was missing required fields or had the wrong shape."""


class SigningError(DeskError):
    """A transaction could not be signed with the given key."""

    kind = "SigningError"


class MalformedTransactionError(SigningError):
    """Neither supported transaction encoding could parse the payload."""


class ConfigurationError(DeskError):
    """A required server-side setting (e.g. the wallet secret) is missing."""

    kind = "ConfigurationError"


class DecryptionError(DeskError):
    """Stored key material could not be decrypted."""

    kind = "DecryptionError"


# Stable conflict reasons surfaced to callers.
ORDER_ALREADY_IN_FLIGHT = "OrderAlreadyInFlight"
WALLET_ALREADY_EXISTS = "WalletAlreadyExists"
WATCHER_LIMIT_REACHED = "WatcherLimitReached"


__all__ = [
    "DeskError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "ExternalTimeoutError",
    "ResponseParseError",
    "SigningError",
    "MalformedTransactionError",
    "ConfigurationError",
    "DecryptionError",
    "ORDER_ALREADY_IN_FLIGHT",
    "WALLET_ALREADY_EXISTS",
    "WATCHER_LIMIT_REACHED",
]
