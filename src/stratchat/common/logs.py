"""Centralized logging configuration for stratchat using structlog."""

import logging
import os
import time
from typing import Any

import numpy as np
import structlog
from structlog.dev import BRIGHT, DIM, RESET_ALL, Column, ConsoleRenderer, KeyValueColumnFormatter
from structlog.typing import EventDict, Processor, WrappedLogger

_PROGRAM_START_TIME = time.time()

# Library loggers that are noisy at INFO and below
_CAPPED_LIBRARY_LOGGERS = ("websockets", "google_genai", "httpx", "httpcore", "uvicorn.access")


def hex_to_ansi_fg(hex_color: int) -> str:
  """Convert hex color (e.g., 0xad8a89) to ANSI 24-bit foreground escape code."""
  r = (hex_color >> 16) & 0xFF
  g = (hex_color >> 8) & 0xFF
  b = hex_color & 0xFF
  return f"\x1b[38;2;{r};{g};{b}m"


_LEVEL_TAGS = {
  "debug": (0x908CAA, "dbug"),
  "info": (0x9CCFD8, "info"),
  "warning": (0xF6C177, "warn"),
  "error": (0xEB6F92, "eror"),
  "exception": (0xEB6F92, "exc!"),
  "critical": (0xEB6F92, "crit"),
}


def _round_floats(value: Any, digits: int) -> Any:
  if isinstance(value, bool):
    return value
  if isinstance(value, float):
    return round(value, digits)
  if isinstance(value, np.ndarray):
    return _round_floats(value.tolist(), digits)
  if isinstance(value, list) or type(value) is tuple:
    return [_round_floats(item, digits) for item in value]
  if isinstance(value, dict):
    return {k: _round_floats(v, digits) for k, v in value.items()}
  return value


class FloatPrecisionProcessor:
  """
  Round floats in event fields, including floats nested in lists, dicts and numpy arrays.

  :param digits: The number of digits to round to.
  """

  def __init__(self, digits: int = 3):
    self.digits = digits

  def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
      if key == "event":
        continue
      event_dict[key] = _round_floats(value, self.digits)
    return event_dict


def _relative_time_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Add a +[mm:]ss.mmm timestamp relative to program start."""
  elapsed = time.time() - _PROGRAM_START_TIME
  minutes, seconds = divmod(elapsed, 60)
  prefix = f"{int(minutes):02d}:" if minutes >= 1 else ""
  event_dict["timestamp"] = f"+{prefix}{seconds:06.3f}"
  return event_dict


def _compact_level_processor(
  _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
  """Convert log levels to a colored 4-character tag."""
  level = event_dict.get("level")
  if level in _LEVEL_TAGS:
    color, tag = _LEVEL_TAGS[level]
    event_dict["level"] = f"[{hex_to_ansi_fg(color)}{tag}{RESET_ALL}]"
  return event_dict


def _console_renderer() -> ConsoleRenderer:
  def plain(style: str, width: int = 0, prefix: str = "", postfix: str = ""):
    return KeyValueColumnFormatter(
      key_style=None,
      value_style=style,
      reset_style=RESET_ALL,
      value_repr=str,
      width=width,
      prefix=prefix,
      postfix=postfix,
    )

  logger_name = plain(hex_to_ansi_fg(0x7D6B95), prefix="[", postfix="]")
  return ConsoleRenderer(
    colors=True,
    columns=[
      Column(
        "",
        KeyValueColumnFormatter(
          key_style=hex_to_ansi_fg(0x6E6A86),
          value_style=hex_to_ansi_fg(0xF6C177),
          reset_style=RESET_ALL,
          value_repr=str,
        ),
      ),
      Column("timestamp", plain(DIM)),
      Column("level", plain("")),
      Column("logger_name", logger_name),
      Column("logger", logger_name),
      Column("event", plain(BRIGHT, width=30)),
    ],
  )


def setup_logging(
  level: str = "INFO", json_output: bool = False, correlation_id: str | None = None
) -> None:
  """Configure structured logging for the application."""
  shared_processors: list[Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.stdlib.ExtraAdder(),
    FloatPrecisionProcessor(digits=3),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
  ]

  if correlation_id:
    shared_processors.insert(0, structlog.contextvars.merge_contextvars)
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

  if json_output:
    shared_processors.append(structlog.processors.TimeStamper(fmt="iso"))
    log_renderer: Processor = structlog.processors.JSONRenderer()
  else:
    shared_processors += [_compact_level_processor, _relative_time_processor]
    log_renderer = _console_renderer()

  structlog.configure(
    processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=shared_processors,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      log_renderer,
    ],
  )

  handler = logging.StreamHandler()
  handler.setFormatter(formatter)
  root_logger = logging.getLogger()
  root_logger.handlers.clear()
  root_logger.addHandler(handler)
  root_logger.setLevel(level)

  for name in _CAPPED_LIBRARY_LOGGERS:
    liblog = logging.getLogger(name)
    liblog.handlers.clear()
    liblog.setLevel(logging.WARNING)
    liblog.propagate = True


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
  """Get a structured logger instance."""
  return structlog.get_logger(name, **initial_values)


def setup_logging_from_env() -> None:
  """Setup logging using environment variables."""
  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  json_output = os.getenv("JSON_LOGS", "false").lower() in ("true", "1", "yes", "on")
  correlation_id = os.getenv("CORRELATION_ID")

  setup_logging(level=log_level, json_output=json_output, correlation_id=correlation_id)
