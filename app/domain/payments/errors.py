"""Payment domain errors - Teori checkout failure taxonomy"""

from typing import Optional

ORDER_ALREADY_EXISTS = "ORDER_ALREADY_EXISTS"

# Statuses worth another attempt; other 4xx mean the request itself is wrong
RETRYABLE_STATUS_CODES = {408, 425, 429}


class TeoriError(Exception):
    """Base class for all Teori checkout errors"""

    pass


class ConfigurationError(TeoriError):
    """Missing or invalid provider settings (missing secret, non-HTTPS public URL)"""

    pass


class ServiceDisabledError(TeoriError):
    """Teori is switched off in site settings"""

    pass


class SettingsNotLoadedError(TeoriError, RuntimeError):
    """Signing was attempted before any settings snapshot was resolved"""

    pass


class ProviderApiError(TeoriError):
    """Non-2xx, malformed or unreachable response from the Teori API"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.status_text = status_text
        self.body = body

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return False
        return self.status >= 500 or self.status in RETRYABLE_STATUS_CODES

    @property
    def is_order_already_exists(self) -> bool:
        # Teori reports duplicate merchant references with this code in the error body
        return bool(self.body) and ORDER_ALREADY_EXISTS in self.body


class ProviderNetworkError(ProviderApiError):
    """Transport failure before any HTTP response: timeout, DNS, refused connection"""

    TIMEOUT = "timeout"
    CONNECTIVITY = "connectivity"
    NETWORK = "network"

    def __init__(self, message: str, kind: str = NETWORK):
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return True


class ProviderResponseError(ProviderApiError):
    """A 2xx response whose body could not be read or parsed as JSON"""

    @property
    def retryable(self) -> bool:
        return False
