"""
HostFinder Client

Python SDK for discovering and selecting marketplace hosts.
"""

from shared.errors import HostFinderError
from shared.log_config import configure_logging
from .sdk import HostFinderClient

__all__ = ["HostFinderClient", "HostFinderError", "configure_logging"]
__version__ = "0.1.0"
