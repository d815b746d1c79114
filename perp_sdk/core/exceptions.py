"""
Custom exceptions for the trading SDK.

Exception hierarchy:
    SdkError (base)
    ├── ExchangeError
    │   ├── ConnectionError
    │   ├── RequestError
    │   │   └── AuthenticationError
    │   │       └── RefreshTokenExpiredError
    │   ├── UnauthorizedRequestError
    │   ├── RateLimitError
    │   └── OrderError
    ├── ChannelError
    ├── LedgerError
    │   └── SnapshotFetchError
    ├── SigningError
    │   ├── SigningUnavailableError
    │   └── ChainIdUndeterminedError
    └── ContainerError
        ├── WalletNotFoundError
        └── ApiKeyNotFoundError
"""

from typing import Any


class SdkError(Exception):
    """Base exception for all SDK errors."""

    default_message = "SDK error occurred"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.append(f"[{self.code}]")
        if self.details:
            parts.append(f"Details: {self.details}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


# Exchange-related errors
class ExchangeError(SdkError):
    """Base exception for exchange-related errors."""

    default_message = "Exchange error occurred"


class ConnectionError(ExchangeError):
    """Connection to exchange failed."""

    default_message = "Failed to connect to exchange"


class RequestError(ExchangeError):
    """Exchange answered a request with an error status."""

    default_message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        status: int | None = None,
        data: Any = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.status = status
        self.data = data

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (HTTP {self.status})"
        return base


class AuthenticationError(RequestError):
    """Exchange rejected the session credentials."""

    default_message = "Authentication failed"


class RefreshTokenExpiredError(AuthenticationError):
    """Refresh token was rejected while renewing the session."""

    default_message = "Refresh token is expired"


class UnauthorizedRequestError(ExchangeError):
    """Authenticated request attempted without a usable session."""

    default_message = "No session available for authenticated request"


class RateLimitError(ExchangeError):
    """Rate limit exceeded on exchange API."""

    default_message = "Rate limit exceeded"

    def __init__(
        self,
        message: str | None = None,
        retry_after: int = 60,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.retry_after = retry_after

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} (retry after {self.retry_after}s)"


class OrderError(ExchangeError):
    """Order-related error."""

    default_message = "Order error occurred"

    def __init__(
        self,
        message: str | None = None,
        order_id: str | None = None,
        instrument: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, details)
        self.order_id = order_id
        self.instrument = instrument

    def __str__(self) -> str:
        base = super().__str__()
        parts = [base]
        if self.order_id:
            parts.append(f"order_id={self.order_id}")
        if self.instrument:
            parts.append(f"instrument={self.instrument}")
        return " ".join(parts)


# Push channel errors
class ChannelError(SdkError):
    """Push channel command failed."""

    default_message = "Channel command failed"


# Ledger errors
class LedgerError(SdkError):
    """Base exception for account ledger errors."""

    default_message = "Ledger error occurred"


class SnapshotFetchError(LedgerError):
    """One or more bulk snapshot fetches failed while starting the ledger."""

    default_message = "Snapshot fetch failed"

    def __init__(
        self,
        message: str | None = None,
        failures: dict[str, BaseException] | None = None,
        code: str | None = None,
    ):
        self.failures = failures or {}
        super().__init__(
            message,
            code,
            {kind: repr(error) for kind, error in self.failures.items()},
        )


# Signing errors
class SigningError(SdkError):
    """Base exception for signing errors."""

    default_message = "Signing failed"


class SigningUnavailableError(SigningError):
    """Operation requires a wallet but the account has none."""

    default_message = "Account has no signing capability"


class ChainIdUndeterminedError(SigningError):
    """Wallet chain id could not be determined."""

    default_message = "Unable to determine chain id"


# Container errors
class ContainerError(SdkError):
    """Base exception for container wiring errors."""

    default_message = "Container error"


class WalletNotFoundError(ContainerError):
    """Named wallet is not configured."""

    def __init__(self, wallet_name: str):
        self.wallet_name = wallet_name
        super().__init__(f'Wallet "{wallet_name}" not found')


class ApiKeyNotFoundError(ContainerError):
    """Named API key is not configured."""

    def __init__(self, api_key_name: str):
        self.api_key_name = api_key_name
        super().__init__(f'API key "{api_key_name}" not found')
