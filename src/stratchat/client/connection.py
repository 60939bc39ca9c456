"""
WebSocket transport between the client and the relay.
"""

from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from stratchat.common import get_logger
from stratchat.wire import (
  AudioMessage,
  ConfigMessage,
  DebugMessage,
  ServerMessage,
  TextMessage,
  deserialize_server_message,
  serialize_message,
)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class TransportError(Exception):
  """The relay connection could not be opened or used."""


class RelayConnection:
  """
  One websocket connection to the relay.

  Opening the connection sends the session config immediately; everything the relay sends back
  is exposed through ``messages()``.
  """

  def __init__(self, url: str, open_timeout: float = 10.0):
    self.url = url
    self.open_timeout = open_timeout
    self.ws: ClientConnection | None = None
    self.logger = get_logger("client/conn")

  async def open(self, config: ConfigMessage) -> None:
    """
    Connect and send the config message.

    :raises TransportError: If the relay is unreachable or rejects the handshake.
    """
    try:
      self.ws = await websockets.connect(self.url, open_timeout=self.open_timeout, max_size=None)
      await self.ws.send(serialize_message(config))
    except (OSError, TimeoutError, InvalidURI, InvalidHandshake, ConnectionClosed) as e:
      self.ws = None
      raise TransportError(f"Could not connect to {self.url}: {e}") from e
    self.logger.info("Connected to relay", url=self.url)

  async def _send(self, payload: str) -> None:
    if self.ws is None:
      raise TransportError("Not connected")
    try:
      await self.ws.send(payload)
    except ConnectionClosed as e:
      raise TransportError(f"Connection closed while sending: {e}") from e

  async def send_audio(self, pcm: bytes) -> None:
    await self._send(serialize_message(AudioMessage.from_pcm(pcm)))

  async def send_text(self, text: str) -> None:
    await self._send(serialize_message(TextMessage(text=text)))

  async def send_debug(self, payload: Any) -> None:
    await self._send(serialize_message(DebugMessage(debug=payload)))

  async def messages(self) -> AsyncIterator[ServerMessage]:
    """Yield relay messages until the connection closes, for any reason."""
    if self.ws is None:
      return
    try:
      async for raw in self.ws:
        message = deserialize_server_message(raw)
        if message is None:
          self.logger.debug("Ignoring unrecognized relay message")
          continue
        yield message
    except ConnectionClosed:
      pass

  @property
  def close_code(self) -> int:
    """Close code of a finished connection; 1006 if it ended without a close frame."""
    if self.ws is None or self.ws.close_code is None:
      return ABNORMAL_CLOSURE
    return self.ws.close_code

  @property
  def close_reason(self) -> str:
    if self.ws is None or self.ws.close_reason is None:
      return ""
    return self.ws.close_reason

  async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
    if self.ws is not None:
      await self.ws.close(code, reason)
