"""
Wire protocol shared by the relay and the client: audio framing and websocket messages.
"""

from .audio import (
  INPUT_AUDIO_MIME,
  INPUT_SAMPLE_RATE,
  OUTPUT_SAMPLE_RATE,
  DecodeError,
  decode_pcm16_to_float,
  encode_pcm16,
  encode_wav,
  encode_wav_bytes,
  from_base64,
  sample_rate_from_mime,
  to_base64,
)
from .codec import (
  ClientMessage,
  Message,
  ServerMessage,
  deserialize_client_message,
  deserialize_server_message,
  serialize_message,
)
from .messages import (
  AudioMessage,
  ConfigMessage,
  DebugMessage,
  InlineData,
  ModelTurn,
  Part,
  ServerContent,
  ServerContentMessage,
  ServerReadyMessage,
  TextMessage,
  Transcription,
)

__all__ = [
  # Audio framing
  "INPUT_AUDIO_MIME",
  "INPUT_SAMPLE_RATE",
  "OUTPUT_SAMPLE_RATE",
  "DecodeError",
  "decode_pcm16_to_float",
  "encode_pcm16",
  "encode_wav",
  "encode_wav_bytes",
  "from_base64",
  "sample_rate_from_mime",
  "to_base64",
  # Messages
  "AudioMessage",
  "ConfigMessage",
  "DebugMessage",
  "InlineData",
  "ModelTurn",
  "Part",
  "ServerContent",
  "ServerContentMessage",
  "ServerReadyMessage",
  "TextMessage",
  "Transcription",
  # Codec
  "ClientMessage",
  "Message",
  "ServerMessage",
  "deserialize_client_message",
  "deserialize_server_message",
  "serialize_message",
]
