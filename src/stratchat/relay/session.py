"""
Per-connection relay session.

A client connection moves through ``awaiting_config -> active -> terminated``. Nothing reaches
the model until a valid config message arrives; after that audio and text flow upstream and the
model's normalized events flow back down as ``serverContent`` messages.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Protocol

from websockets.exceptions import ConnectionClosed

from stratchat.common import Pretty, get_logger
from stratchat.relay.config import UpstreamConfig
from stratchat.relay.upstream import (
  AssistantAudio,
  AssistantText,
  ConnectError,
  PartialTranscript,
  SendError,
  SessionClosed,
  SessionError,
  TurnComplete,
  UpstreamEvent,
  UpstreamSessionAdapter,
  UpstreamSessionConfig,
)
from stratchat.wire import (
  AudioMessage,
  ConfigMessage,
  DebugMessage,
  DecodeError,
  InlineData,
  ModelTurn,
  Part,
  ServerContent,
  ServerContentMessage,
  ServerReadyMessage,
  TextMessage,
  Transcription,
  deserialize_client_message,
  serialize_message,
  to_base64,
)

NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011

CONNECT_FAILED_REASON = "Failed to connect to AI"

# Close reasons must fit in a 125-byte control frame along with the code
_MAX_REASON_BYTES = 120


class HandshakeState(StrEnum):
  AWAITING_CONFIG = "awaiting_config"
  ACTIVE = "active"
  TERMINATED = "terminated"


class ClientTransport(Protocol):
  """The subset of a websocket server connection used by a relay session."""

  def __aiter__(self) -> AsyncIterator[str | bytes]: ...

  async def send(self, message: str) -> None: ...

  async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


def event_to_message(event: UpstreamEvent) -> ServerContentMessage | None:
  """Re-shape a content event for the client. Terminal events have no message form."""
  match event:
    case PartialTranscript(text=text):
      content = ServerContent(input_transcription=Transcription(text=text))
    case AssistantText(text=text):
      content = ServerContent(output_transcription=Transcription(text=text))
    case AssistantAudio(data=data, mime_type=mime_type):
      inline = InlineData(mime_type=mime_type, data=to_base64(data))
      content = ServerContent(model_turn=ModelTurn(parts=[Part(inline_data=inline)]))
    case TurnComplete():
      content = ServerContent(turn_complete=True)
    case _:
      return None
  return ServerContentMessage(server_content=content)


def _truncate_reason(reason: str) -> str:
  encoded = reason.encode("utf-8")
  if len(encoded) <= _MAX_REASON_BYTES:
    return reason
  return encoded[:_MAX_REASON_BYTES].decode("utf-8", errors="ignore")


class RelaySession:
  """
  Bridges one client connection to one upstream live session.

  :param transport: The client's websocket connection.
  :param adapter_factory: Creates an unopened upstream adapter.
  :param upstream_config: Model and transcription defaults applied to every session.
  """

  def __init__(
    self,
    transport: ClientTransport,
    adapter_factory: Callable[[], UpstreamSessionAdapter],
    upstream_config: UpstreamConfig,
    session_id: str = "",
  ):
    self.transport = transport
    self.adapter_factory = adapter_factory
    self.upstream_config = upstream_config
    self.state = HandshakeState.AWAITING_CONFIG
    self.adapter: UpstreamSessionAdapter | None = None
    self.logger = get_logger("relay/session", session=session_id)
    self._messages: AsyncIterator[str | bytes] | None = None

  async def run(self) -> None:
    """Drive the session until either side goes away."""
    try:
      config = await self._await_config()
      if config is None:
        self.logger.info("Client left before configuring")
        return

      self.adapter = adapter = self.adapter_factory()
      try:
        await adapter.open(self._session_config(config))
      except ConnectError as e:
        self.logger.error("Upstream unavailable, closing client", error=str(e))
        await self._close_client(INTERNAL_ERROR, CONNECT_FAILED_REASON)
        return

      self.state = HandshakeState.ACTIVE
      await self.transport.send(serialize_message(ServerReadyMessage()))
      self.logger.info("Session active")
      await self._forward(adapter)
    except ConnectionClosed:
      self.logger.info("Client connection closed")
    finally:
      self.state = HandshakeState.TERMINATED
      if self.adapter is not None:
        await self.adapter.close()

  def _session_config(self, message: ConfigMessage) -> UpstreamSessionConfig:
    upstream = self.upstream_config
    conversational = (
      message.conversational if message.conversational is not None else upstream.conversational
    )
    return UpstreamSessionConfig(
      model=upstream.model,
      system_instruction=message.system_instruction or upstream.default_system_instruction,
      conversational=conversational,
      input_transcription=upstream.input_transcription,
      output_transcription=upstream.output_transcription,
    )

  def _incoming(self) -> AsyncIterator[str | bytes]:
    if self._messages is None:
      self._messages = aiter(self.transport)
    return self._messages

  async def _await_config(self) -> ConfigMessage | None:
    """Discard everything until a valid config message arrives. None if the client leaves."""
    async for raw in self._incoming():
      message = deserialize_client_message(raw)
      if isinstance(message, ConfigMessage):
        self.logger.info(
          "Config received",
          conversational=message.conversational,
          instruction_chars=len(message.system_instruction),
        )
        return message
      self.logger.debug("Dropping message before config", kind=type(message).__name__)
    return None

  async def _forward(self, adapter: UpstreamSessionAdapter) -> None:
    client_task = asyncio.create_task(self._pump_client(adapter), name="relay-client-pump")
    upstream_task = asyncio.create_task(self._pump_upstream(adapter), name="relay-upstream-pump")
    tasks = {client_task, upstream_task}
    try:
      done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
      for task in tasks:
        if not task.done():
          task.cancel()
      await asyncio.gather(*tasks, return_exceptions=True)

    for task in done:
      if not task.cancelled() and (error := task.exception()) is not None:
        if not isinstance(error, ConnectionClosed):
          self.logger.error("Relay pump failed", task=task.get_name(), error=str(error))
          await self._close_client(INTERNAL_ERROR, "Relay error")

  async def _pump_client(self, adapter: UpstreamSessionAdapter) -> None:
    """Forward client audio and text upstream until the client disconnects."""
    async for raw in self._incoming():
      match deserialize_client_message(raw):
        case AudioMessage() as message:
          try:
            pcm = message.pcm()
          except DecodeError as e:
            self.logger.warning("Dropping malformed audio frame", error=str(e))
            continue
          if not await self._send_upstream(adapter.send_audio(pcm)):
            return
        case TextMessage(text=text):
          self.logger.info("Forwarding text turn", chars=len(text))
          if not await self._send_upstream(adapter.send_text(text)):
            return
        case DebugMessage(debug=debug):
          self.logger.debug("Client debug", payload=Pretty(debug))
        case ConfigMessage():
          self.logger.debug("Ignoring repeated config")
        case None:
          self.logger.debug("Ignoring unrecognized message")

  async def _send_upstream(self, send: Awaitable[None]) -> bool:
    try:
      await send
    except SendError as e:
      self.logger.error("Upstream send failed", error=str(e))
      await self._close_client(INTERNAL_ERROR, str(e))
      return False
    return True

  async def _pump_upstream(self, adapter: UpstreamSessionAdapter) -> None:
    """Forward normalized upstream events to the client until the upstream session ends."""
    async for event in adapter.events():
      match event:
        case SessionClosed(code=code, reason=reason):
          self.logger.info("Upstream closed", code=code, reason=reason)
          await self._close_client(INTERNAL_ERROR, reason)
          return
        case SessionError(message=error):
          self.logger.error("Upstream error", error=error)
          await self._close_client(INTERNAL_ERROR, error)
          return
        case _:
          message = event_to_message(event)
          if message is not None:
            await self.transport.send(serialize_message(message))

    await self._close_client(INTERNAL_ERROR, "Upstream session ended")

  async def _close_client(self, code: int, reason: str) -> None:
    try:
      await self.transport.close(code, _truncate_reason(reason))
    except ConnectionClosed:
      pass
