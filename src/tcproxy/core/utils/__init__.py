"""Utility functions and helpers."""

from tcproxy.core.utils.log_config import configure_logging
from tcproxy.core.utils.utils import format_address, format_bytes

__all__ = ["configure_logging", "format_address", "format_bytes"]
