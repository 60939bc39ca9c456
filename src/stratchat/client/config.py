from pydantic import BaseModel, Field, model_validator

from stratchat.wire import INPUT_SAMPLE_RATE

DEFAULT_RELAY_URL = "ws://localhost:3001/ws"
DEFAULT_REFINE_URL = "http://localhost:3002/api/refine"
DEFAULT_SYSTEM_INSTRUCTION = (
  "You are a silent conversation copilot. Transcribe the conversation and, when it helps, "
  "offer one short strategic suggestion to the primary speaker."
)


class BackoffPolicy(BaseModel):
  """Exponential reconnect delays: initial_delay * factor^(attempt-1), capped at max_delay."""

  initial_delay: float = Field(default=1.0, gt=0.0)
  """Delay before the first reconnect attempt, in seconds."""

  factor: float = Field(default=2.0, ge=1.0)

  max_delay: float = Field(default=5.0, gt=0.0)
  """Upper bound for any single delay, in seconds."""

  max_attempts: int = Field(default=3, ge=0)
  """Reconnect attempts before giving up. Zero disables reconnection."""

  def delay_for(self, attempt: int) -> float:
    """Delay in seconds before reconnect ``attempt`` (1-based)."""
    if attempt < 1:
      raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(self.initial_delay * self.factor ** (attempt - 1), self.max_delay)


class ClientSettings(BaseModel):
  """Everything a live session needs to know up front."""

  relay_url: str = Field(default=DEFAULT_RELAY_URL, pattern=r"^wss?://")
  system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION

  sample_rate: int = Field(default=INPUT_SAMPLE_RATE, gt=0)
  """Capture rate. The relay and model expect 16 kHz."""

  block_size: int = Field(default=4096, gt=0)
  """Samples per captured frame."""

  microphone_device: int | str | None = None
  """PortAudio input device for the primary speaker. None selects the default input."""

  display_device: int | str | None = None
  """Optional loopback/monitor device carrying the other side of the conversation."""

  conversational: bool = False
  """Ask the relay for spoken replies and play them back."""

  refine_url: str | None = DEFAULT_REFINE_URL
  """Refinement endpoint. None disables refinement."""

  backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)

  @model_validator(mode="after")
  def validate_devices(self) -> "ClientSettings":
    if self.display_device is not None and self.display_device == self.microphone_device:
      raise ValueError("display_device must differ from microphone_device")
    return self
