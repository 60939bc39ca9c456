"""
Live session controller.

Owns the client's connection lifecycle: acquiring audio, opening the relay transport, routing
relay messages into the transcript, and reconnecting with exponential backoff after abnormal
closes. Status moves through ``disconnected -> connecting -> connected`` and, on abnormal
close, ``reconnecting -> connecting`` until the attempts run out and the session lands in
``error``.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol

from stratchat.client.audio import AudioUnavailable, FrameSink
from stratchat.client.buffer import AudioChunkBuffer
from stratchat.client.config import ClientSettings
from stratchat.client.connection import (
  ABNORMAL_CLOSURE,
  NORMAL_CLOSURE,
  RelayConnection,
  TransportError,
)
from stratchat.client.refinement import RefinementReconciler, Refiner
from stratchat.client.transcript import TranscriptAssembler, TranscriptEntry, TranscriptLog
from stratchat.common import Seconds, get_logger
from stratchat.wire import (
  ConfigMessage,
  Part,
  ServerContent,
  ServerContentMessage,
  ServerMessage,
  ServerReadyMessage,
  encode_pcm16,
  sample_rate_from_mime,
)
from stratchat.wire.audio import Samples

logger = get_logger("client/ctl")


class ConnectionStatus(StrEnum):
  DISCONNECTED = "disconnected"
  CONNECTING = "connecting"
  CONNECTED = "connected"
  RECONNECTING = "reconnecting"
  ERROR = "error"


class ReconnectExhausted(Exception):
  """Every reconnect attempt failed."""


class Connection(Protocol):
  async def open(self, config: ConfigMessage) -> None: ...

  async def send_audio(self, pcm: bytes) -> None: ...

  async def send_text(self, text: str) -> None: ...

  async def send_debug(self, payload: Any) -> None: ...

  def messages(self) -> AsyncIterator[ServerMessage]: ...

  @property
  def close_code(self) -> int: ...

  @property
  def close_reason(self) -> str: ...

  async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


class Capture(Protocol):
  def start(self) -> None: ...

  def stop(self) -> None: ...


class Playback(Protocol):
  def play(self, samples: Samples, sample_rate: int) -> float | None: ...

  def reset(self) -> None: ...


type StatusCallback = Callable[[ConnectionStatus], None]
type EntryCallback = Callable[[TranscriptEntry], None]
type ErrorCallback = Callable[[Exception], None]


class LiveSessionController:
  """
  Runs one live session against the relay.

  :param settings: Relay address, audio devices and reconnect policy.
  :param connection_factory: Creates an unopened relay connection per attempt.
  :param capture_factory: Creates the capture graph feeding the given frame sink.
  :param refiner: Second-pass transcriber for finalized turns. None disables refinement.
  :param playback: Output for spoken replies in conversational mode.
  :param on_status: Called on every status change.
  :param on_entry: Called with every new or updated transcript entry.
  :param on_error: Called with the fatal error when the session lands in ``error``.
  :param sleep: Awaitable delay used for reconnect backoff.
  """

  def __init__(
    self,
    settings: ClientSettings,
    *,
    connection_factory: Callable[[], Connection] | None = None,
    capture_factory: Callable[[FrameSink], Capture] | None = None,
    refiner: Refiner | None = None,
    playback: Playback | None = None,
    on_status: StatusCallback | None = None,
    on_entry: EntryCallback | None = None,
    on_error: ErrorCallback | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ):
    self.settings = settings
    self.connection_factory = connection_factory or (lambda: RelayConnection(settings.relay_url))
    self.capture_factory = capture_factory or self._device_capture
    self.playback = playback
    if self.playback is None and settings.conversational:
      from stratchat.client.devices import AudioPlayback

      self.playback = AudioPlayback()
    self.on_status = on_status
    self.on_error = on_error
    self.sleep = sleep

    self.status = ConnectionStatus.DISCONNECTED
    self.last_error: Exception | None = None
    self.attempts = 0

    self.log = TranscriptLog(on_change=on_entry)
    self.buffer = AudioChunkBuffer(settings.sample_rate)
    self.reconciler = (
      RefinementReconciler(self.log, refiner, settings.sample_rate) if refiner else None
    )
    self.assembler = TranscriptAssembler(
      self.buffer,
      on_entry=self.log.upsert,
      on_turn_complete=self.reconciler.submit if self.reconciler else None,
    )

    self._loop: asyncio.AbstractEventLoop | None = None
    self._session_task: asyncio.Task | None = None
    self._connection: Connection | None = None
    self._capture: Capture | None = None
    self._outbox: asyncio.Queue[bytes] | None = None
    self._sender_task: asyncio.Task | None = None

  def _device_capture(self, sink: FrameSink) -> Capture:
    from stratchat.client.devices import CaptureGraph

    return CaptureGraph(self.settings, sink)

  # Lifecycle

  def start(self) -> asyncio.Task | None:
    """
    Begin a session from ``disconnected`` or ``error``. Must be called from the event loop.

    Returns the session task, or None if a session is already running.
    """
    if self.status not in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
      logger.debug("Start ignored", status=self.status)
      return None
    self._loop = asyncio.get_running_loop()
    self.attempts = 0
    self.last_error = None
    self._session_task = asyncio.create_task(self._run(), name="live-session")
    return self._session_task

  async def stop(self) -> None:
    """
    End the session from any state. Cancels any pending reconnect and waits for in-flight
    refinements to land in the transcript. Idempotent.
    """
    task, self._session_task = self._session_task, None
    connection = self._connection
    if task is not None and not task.done():
      if connection is not None:
        try:
          await connection.close(NORMAL_CLOSURE)
        except TransportError as e:
          logger.debug("Error closing connection", error=str(e))
      task.cancel()
      await asyncio.gather(task, return_exceptions=True)
    await self._teardown_session()
    if self.reconciler is not None:
      await self.reconciler.drain()
    self._set_status(ConnectionStatus.DISCONNECTED)

  async def wait_closed(self) -> None:
    """Wait until the session ends on its own (clean close or error)."""
    task = self._session_task
    if task is not None:
      await asyncio.gather(task, return_exceptions=True)

  async def send_text(self, text: str) -> bool:
    """Send a typed turn. False if not connected."""
    if self.status != ConnectionStatus.CONNECTED or self._connection is None:
      return False
    try:
      await self._connection.send_text(text)
    except TransportError as e:
      logger.warning("Text send failed", error=str(e))
      return False
    return True

  async def send_debug(self, payload: Any) -> bool:
    """Send free-form diagnostics for the relay to log. False if not connected."""
    if self.status != ConnectionStatus.CONNECTED or self._connection is None:
      return False
    try:
      await self._connection.send_debug(payload)
    except TransportError as e:
      logger.debug("Debug send failed", error=str(e))
      return False
    return True

  # Session loop

  async def _run(self) -> None:
    initial = True
    while True:
      self._set_status(ConnectionStatus.CONNECTING)
      try:
        connection = await self._open_session()
      except AudioUnavailable as e:
        self._fail(e)
        return
      except TransportError as e:
        if initial:
          self._fail(e)
          return
        logger.warning("Reconnect attempt failed", attempt=self.attempts, error=str(e))
        code, reason = ABNORMAL_CLOSURE, str(e)
      else:
        initial = False
        self._set_status(ConnectionStatus.CONNECTED)
        code, reason = await self._pump(connection)
        await self._teardown_session()
        logger.info("Relay connection closed", code=code, reason=reason)

      if code == NORMAL_CLOSURE:
        self.attempts = 0
        self._set_status(ConnectionStatus.DISCONNECTED)
        return

      backoff = self.settings.backoff
      if self.attempts >= backoff.max_attempts:
        self._fail(ReconnectExhausted(f"Gave up after {self.attempts} reconnect attempts"))
        return

      self.attempts += 1
      delay = backoff.delay_for(self.attempts)
      self._set_status(ConnectionStatus.RECONNECTING)
      logger.info("Reconnecting", attempt=self.attempts, delay=Seconds(delay), code=code)
      await self.sleep(delay)

  async def _open_session(self) -> Connection:
    """Acquire audio, then open the transport. Releases everything on failure."""
    capture = self.capture_factory(self._frame_from_device)
    capture.start()
    self._capture = capture

    connection = self.connection_factory()
    config = ConfigMessage(
      system_instruction=self.settings.system_instruction,
      conversational=self.settings.conversational,
    )
    try:
      await connection.open(config)
    except TransportError:
      await self._teardown_session()
      raise

    self._connection = connection
    self._outbox = asyncio.Queue()
    self._sender_task = asyncio.create_task(
      self._send_audio_loop(connection, self._outbox), name="audio-sender"
    )
    return connection

  async def _pump(self, connection: Connection) -> tuple[int, str]:
    async for message in connection.messages():
      self.handle_message(message)
    return connection.close_code, connection.close_reason

  async def _teardown_session(self) -> None:
    """Release the transport and audio of the current connection. Safe to call repeatedly."""
    # A lost connection ends the turn in progress
    self.assembler.complete_turn()

    capture, self._capture = self._capture, None
    if capture is not None:
      capture.stop()

    sender, self._sender_task = self._sender_task, None
    if sender is not None:
      sender.cancel()
      await asyncio.gather(sender, return_exceptions=True)
    self._outbox = None
    self._connection = None

    if self.playback is not None:
      self.playback.reset()

  # Audio path

  def _frame_from_device(self, frame: Samples) -> None:
    """Capture callback; may run on the audio thread."""
    if self._loop is not None:
      self._loop.call_soon_threadsafe(self.handle_frame, frame)

  def handle_frame(self, frame: Samples) -> None:
    """Encode and queue one captured frame, and keep it for the turn's refinement clip."""
    if self.status != ConnectionStatus.CONNECTED or self._outbox is None:
      return
    self._outbox.put_nowait(encode_pcm16(frame))
    self.buffer.append(frame)

  async def _send_audio_loop(self, connection: Connection, outbox: asyncio.Queue[bytes]) -> None:
    while True:
      pcm = await outbox.get()
      try:
        await connection.send_audio(pcm)
      except TransportError as e:
        logger.debug("Dropping audio frame", error=str(e))

  # Relay messages

  def handle_message(self, message: ServerMessage) -> None:
    match message:
      case ServerReadyMessage():
        logger.info("Relay ready")
      case ServerContentMessage(server_content=content):
        self._handle_content(content)

  def _handle_content(self, content: ServerContent) -> None:
    if content.input_transcription is not None:
      self.assembler.add_fragment(content.input_transcription.text)

    if content.turn_complete:
      self.assembler.complete_turn()

    if content.output_transcription is not None:
      self.assembler.add_assistant_text(content.output_transcription.text)

    if content.model_turn is not None and self.settings.conversational:
      for part in content.model_turn.parts:
        if part.inline_data is not None:
          self._play(part)
        elif part.text:
          self.assembler.add_assistant_text(part.text)

  def _play(self, part: Part) -> None:
    if self.playback is None or part.inline_data is None:
      return
    try:
      samples = part.audio_samples()
    except ValueError as e:
      logger.warning("Dropping undecodable audio part", error=str(e))
      return
    if samples is not None:
      self.playback.play(samples, sample_rate_from_mime(part.inline_data.mime_type))

  # Status

  def _set_status(self, status: ConnectionStatus) -> None:
    if status == self.status:
      return
    logger.debug("Status", previous=self.status, status=status)
    self.status = status
    if self.on_status is not None:
      self.on_status(status)

  def _fail(self, error: Exception) -> None:
    logger.error("Session failed", error=str(error), kind=type(error).__name__)
    self.last_error = error
    self._set_status(ConnectionStatus.ERROR)
    if self.on_error is not None:
      self.on_error(error)
