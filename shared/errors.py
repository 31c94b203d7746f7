"""
HostFinder Errors

Exception hierarchy shared by discovery, selection and the client.
"""

from typing import Optional


class HostFinderError(Exception):
    """Base exception for HostFinder errors."""
    pass


class ConfigurationError(HostFinderError):
    """Raised when configuration is missing or invalid."""
    pass


class DiscoverySourceError(HostFinderError):
    """Raised by a discovery source when it cannot produce hosts."""
    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class HostProviderNotSetError(HostFinderError):
    """Raised when selection is attempted before a host provider is attached."""
    pass


class HostSelectionError(HostFinderError):
    """Base for invalid selection requests made by the caller."""
    pass


class PreferredHostRequiredError(HostSelectionError):
    """Raised when SPECIFIC mode is used without a preferred address."""
    pass


class UnsupportedModeError(HostSelectionError):
    """Raised when a mode has no scoring weights."""
    pass


class HostUnavailableError(HostSelectionError):
    """Raised when the preferred host is missing, inactive or lacks the model."""
    def __init__(self, address: str, model_id: str, reason: str):
        super().__init__(
            f"Preferred host {address} is not available for model {model_id}: {reason}"
        )
        self.address = address
        self.model_id = model_id
        self.reason = reason
