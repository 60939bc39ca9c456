"""
Messages exchanged between the client and the relay over the websocket.

Field names travel in camelCase on the wire (``systemInstruction``, ``serverContent``) and are
snake_case in Python; every model accepts either.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator
from pydantic.alias_generators import to_camel

from .audio import Samples, decode_pcm16_to_float, from_base64, to_base64


class WireModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


WIRE_CONTEXT = {"wire": True}
"""Validation context used when decoding frames off the socket."""


class TaggedMessage(WireModel):
  """A message identified by its `type` field, which must be present on the wire."""

  @model_validator(mode="before")
  @classmethod
  def require_type_on_wire(cls, data: Any, info: ValidationInfo) -> Any:
    if info.context and info.context.get("wire") and isinstance(data, dict):
      if "type" not in data:
        raise ValueError(f"{cls.__name__} requires an explicit type")
    return data


# Client -> relay


class ConfigMessage(TaggedMessage):
  """Session configuration; must be the first meaningful message on a connection."""

  type: Literal["config"] = "config"
  system_instruction: str
  conversational: bool | None = None
  """Overrides the relay's default assistant-output policy when set."""


class AudioMessage(WireModel):
  """One frame of base64-encoded PCM16 microphone audio."""

  audio: str

  @classmethod
  def from_pcm(cls, pcm: bytes) -> "AudioMessage":
    return cls(audio=to_base64(pcm))

  def pcm(self) -> bytes:
    """Decoded PCM bytes. Raises DecodeError on malformed base64."""
    return from_base64(self.audio)


class TextMessage(WireModel):
  """A typed user turn forwarded verbatim to the model."""

  text: str


class DebugMessage(WireModel):
  """Free-form diagnostics; the relay logs it and does nothing else."""

  debug: Any


# Relay -> client


class ServerReadyMessage(TaggedMessage):
  """Sent once the upstream session is open."""

  type: Literal["server_ready"] = "server_ready"


class Transcription(WireModel):
  text: str


class InlineData(WireModel):
  mime_type: str
  data: str
  """Base64 payload."""


class Part(WireModel):
  text: str | None = None
  inline_data: InlineData | None = None

  def audio_samples(self) -> Samples | None:
    """Float samples of an inline audio part, or None if the part carries no audio."""
    if self.inline_data is None or not self.inline_data.mime_type.startswith("audio/"):
      return None
    return decode_pcm16_to_float(from_base64(self.inline_data.data))


class ModelTurn(WireModel):
  parts: list[Part] = Field(default_factory=list)


class ServerContent(WireModel):
  input_transcription: Transcription | None = None
  output_transcription: Transcription | None = None
  turn_complete: bool | None = None
  model_turn: ModelTurn | None = None


class ServerContentMessage(WireModel):
  """Model output, re-shaped from the upstream session's events."""

  server_content: ServerContent
