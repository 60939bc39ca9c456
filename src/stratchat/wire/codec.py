"""
Message codec for wire protocol serialization and deserialization.

Client messages carry no common discriminator (only the config message has a ``type``), so
decoding tries each shape in order and treats anything that matches none of them as
unrecognized rather than as an error.
"""

from typing import Annotated

from pydantic import Field, TypeAdapter, ValidationError

from .messages import (
  WIRE_CONTEXT,
  AudioMessage,
  ConfigMessage,
  DebugMessage,
  ServerContentMessage,
  ServerReadyMessage,
  TextMessage,
  WireModel,
)

type ClientMessage = ConfigMessage | AudioMessage | TextMessage | DebugMessage
type ServerMessage = ServerReadyMessage | ServerContentMessage
type Message = ClientMessage | ServerMessage

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(
  Annotated[
    ConfigMessage | AudioMessage | TextMessage | DebugMessage,
    Field(union_mode="left_to_right"),
  ]
)
_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(
  Annotated[ServerReadyMessage | ServerContentMessage, Field(union_mode="left_to_right")]
)


def serialize_message(message: WireModel) -> str:
  """
  Serialize a wire protocol message to a JSON string.

  Args:
      message: Any wire protocol message instance

  Returns:
      camelCase JSON with unset optional fields omitted
  """
  return message.model_dump_json(by_alias=True, exclude_none=True)


def deserialize_client_message(raw: str | bytes) -> ClientMessage | None:
  """
  Decode a frame received from a client.

  Binary frames are raw PCM16 audio. Text frames are JSON; anything that is not valid JSON
  or matches no known shape yields None.
  """
  if isinstance(raw, bytes):
    return AudioMessage.from_pcm(raw)
  try:
    return _client_adapter.validate_json(raw, context=WIRE_CONTEXT)
  except ValidationError:
    return None


def deserialize_server_message(raw: str | bytes) -> ServerMessage | None:
  """Decode a frame received from the relay, or None if it matches no known shape."""
  try:
    return _server_adapter.validate_json(raw, context=WIRE_CONTEXT)
  except ValidationError:
    return None
