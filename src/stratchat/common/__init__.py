"""
Shared logging and value formatting for the relay and the client.
"""

from stratchat.common.format import Pretty, Seconds
from stratchat.common.logs import get_logger, setup_logging, setup_logging_from_env

__all__ = [
  "get_logger",
  "setup_logging",
  "setup_logging_from_env",
  "Pretty",
  "Seconds",
]
