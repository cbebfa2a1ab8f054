"""Common utilities shared across the permit-to-work service."""

from .logger import setup_logger
from .timeutil import utcnow, to_utc_naive

__all__ = ["setup_logger", "utcnow", "to_utc_naive"]
