import os

import yaml
from pydantic import BaseModel, Field, validate_call
from pydantic.types import FilePath

from stratchat.common import get_logger

logger = get_logger("relay/cfg")

DEFAULT_SYSTEM_INSTRUCTION = (
  "You are a silent conversation copilot. Listen to the conversation and, when useful, offer "
  "brief strategic suggestions to the primary speaker. Keep every suggestion short."
)


class UpstreamConfig(BaseModel):
  """Configuration for the realtime model session opened per client."""

  model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
  """Live model name."""

  conversational: bool = False
  """Forward model audio/text parts to clients. When False the assistant only transcribes."""

  input_transcription: bool = True
  """Ask the model to transcribe what the primary speaker says."""

  output_transcription: bool = True
  """Ask the model to transcribe its own spoken responses."""

  default_system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
  """Used when a client's config message carries an empty instruction."""


class AnalysisConfig(BaseModel):
  """Models used by the one-shot HTTP analysis endpoints."""

  summary_model: str = "gemini-2.0-flash-lite-preview-02-05"
  strategy_model: str = "gemini-2.0-pro-exp-02-05"
  question_model: str = "gemini-2.0-flash"
  refine_model: str = "gemini-2.0-flash"


class RelayConfig(BaseModel):
  """Top-level relay configuration."""

  host: str = "0.0.0.0"
  port: int = Field(default=3001, gt=0, lt=65536)
  """Websocket listen port."""

  path: str = Field(default="/ws", pattern=r"^/")
  """The only websocket path accepted."""

  http_port: int | None = Field(default=3002, gt=0, lt=65536)
  """Port for the analysis HTTP API. None disables it."""

  upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
  analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

  def pretty_print(self) -> None:
    """Log the effective configuration at INFO level."""
    logger.info("=" * 60)
    logger.info("STRATCHAT RELAY CONFIGURATION")
    logger.info("=" * 60)
    logger.info(f"  Listen: ws://{self.host}:{self.port}{self.path}")
    logger.info(f"  HTTP API Port: {self.http_port or 'disabled'}")
    logger.info("UPSTREAM SETTINGS:")
    logger.info(f"  Model: {self.upstream.model}")
    logger.info(f"  Conversational: {self.upstream.conversational}")
    logger.info(f"  Input Transcription: {self.upstream.input_transcription}")
    logger.info(f"  Output Transcription: {self.upstream.output_transcription}")
    logger.info("ANALYSIS MODELS:")
    logger.info(f"  Summary: {self.analysis.summary_model}")
    logger.info(f"  Strategy: {self.analysis.strategy_model}")
    logger.info(f"  Question: {self.analysis.question_model}")
    logger.info(f"  Refine: {self.analysis.refine_model}")
    logger.info("=" * 60)


@validate_call
def load_config_from_file(config_path: FilePath) -> RelayConfig:
  """Load and validate relay configuration from a YAML file."""

  logger.info("Loading relay configuration", path=str(config_path))

  try:
    with open(config_path, "r", encoding="utf-8") as file:
      config_data = yaml.safe_load(file)
  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML in configuration file: {e}") from e
  except OSError as e:
    raise ValueError(f"Error reading configuration file: {e}") from e

  if config_data is None:
    raise ValueError("Configuration file is empty")

  if not isinstance(config_data, dict):
    raise ValueError("Configuration file must contain a YAML dictionary")

  return RelayConfig.model_validate(config_data)


def get_api_key() -> str:
  """Read the model API key from the environment."""
  key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
  if not key:
    raise ValueError("GEMINI_API_KEY is not set")
  return key
