"""
Adapter over the realtime model's live session.

The adapter owns one bidirectional session per client. It forwards microphone audio and text
turns upstream and turns every upstream message into zero or more normalized events, so the
rest of the relay never touches the SDK's message shapes.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack
from dataclasses import dataclass
from typing import Any, Protocol

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed

from stratchat.common import get_logger
from stratchat.wire import INPUT_AUDIO_MIME

logger = get_logger("relay/upstream")

ABNORMAL_CLOSE = 1006


class UpstreamError(Exception):
  """Base class for failures talking to the realtime model."""


class ConnectError(UpstreamError):
  """The live session could not be opened."""


class SendError(UpstreamError):
  """Audio or text could not be delivered to an open session."""


# Normalized events


@dataclass(frozen=True)
class PartialTranscript:
  """A fragment of the primary speaker's transcription for the current turn."""

  text: str


@dataclass(frozen=True)
class TurnComplete:
  """The model considers the current turn finished."""


@dataclass(frozen=True)
class AssistantText:
  """Text produced by the model, either spoken-output transcription or a text part."""

  text: str


@dataclass(frozen=True)
class AssistantAudio:
  """A chunk of PCM16 audio spoken by the model."""

  data: bytes
  mime_type: str


@dataclass(frozen=True)
class SessionClosed:
  code: int
  reason: str


@dataclass(frozen=True)
class SessionError:
  message: str


type UpstreamEvent = (
  PartialTranscript | TurnComplete | AssistantText | AssistantAudio | SessionClosed | SessionError
)


@dataclass(frozen=True)
class UpstreamSessionConfig:
  """Everything needed to open one live session."""

  model: str
  system_instruction: str
  conversational: bool = False
  input_transcription: bool = True
  output_transcription: bool = True

  def to_live_config(self) -> types.LiveConnectConfig:
    return types.LiveConnectConfig(
      response_modalities=[types.Modality.AUDIO],
      system_instruction=types.Content(parts=[types.Part(text=self.system_instruction)]),
      input_audio_transcription=(
        types.AudioTranscriptionConfig() if self.input_transcription else None
      ),
      output_audio_transcription=(
        types.AudioTranscriptionConfig() if self.output_transcription else None
      ),
    )


class LiveSession(Protocol):
  """The subset of the SDK's live session the adapter relies on."""

  async def send_realtime_input(self, *, audio: types.Blob) -> None: ...

  async def send_client_content(self, *, turns: types.Content, turn_complete: bool) -> None: ...

  def receive(self) -> AsyncIterator[types.LiveServerMessage]: ...


type LiveConnector = Callable[[UpstreamSessionConfig], AbstractAsyncContextManager[LiveSession]]


def gemini_connector(client: genai.Client) -> LiveConnector:
  """Build a connector that opens sessions through the google-genai live API."""

  def connect(config: UpstreamSessionConfig) -> AbstractAsyncContextManager[LiveSession]:
    return client.aio.live.connect(model=config.model, config=config.to_live_config())

  return connect


def normalize_server_message(
  message: types.LiveServerMessage, *, conversational: bool
) -> list[UpstreamEvent]:
  """
  Translate one upstream message into normalized events.

  Ordering within a message: input transcription, model-turn parts, output transcription,
  then turn completion. Model-turn parts are dropped unless ``conversational`` is set.
  Messages carrying none of these (setup acks, tool calls, go-away notices) yield nothing.
  """
  content = message.server_content
  if content is None:
    return []

  events: list[UpstreamEvent] = []
  if content.input_transcription and content.input_transcription.text:
    events.append(PartialTranscript(content.input_transcription.text))

  if conversational and content.model_turn and content.model_turn.parts:
    for part in content.model_turn.parts:
      if part.inline_data and part.inline_data.data:
        mime_type = part.inline_data.mime_type or "audio/pcm;rate=24000"
        if mime_type.startswith("audio/"):
          events.append(AssistantAudio(part.inline_data.data, mime_type))
      elif part.text and not part.thought:
        events.append(AssistantText(part.text))

  if content.output_transcription and content.output_transcription.text:
    events.append(AssistantText(content.output_transcription.text))

  if content.turn_complete:
    events.append(TurnComplete())
  return events


class UpstreamSessionAdapter:
  """
  One live session with the realtime model.

  Whether model-turn audio and text parts are forwarded is taken from the config passed to
  `open`.

  :param connector: Opens the underlying session as an async context manager.
  """

  def __init__(self, connector: LiveConnector):
    self.connector = connector
    self.conversational = False
    self._stack: AsyncExitStack | None = None
    self._session: LiveSession | None = None
    self._closed = False

  @property
  def is_open(self) -> bool:
    return self._session is not None and not self._closed

  async def open(self, config: UpstreamSessionConfig) -> None:
    """
    Open the live session.

    :raises ConnectError: If the session cannot be established.
    """
    if self._session is not None:
      raise ConnectError("Session already opened")

    stack = AsyncExitStack()
    try:
      session = await stack.enter_async_context(self.connector(config))
    except Exception as e:
      await stack.aclose()
      logger.error("Upstream connect failed", model=config.model, error=str(e))
      raise ConnectError(str(e) or type(e).__name__) from e

    self._stack = stack
    self._session = session
    self.conversational = config.conversational
    logger.info("Upstream session open", model=config.model, conversational=self.conversational)

  def _require_session(self) -> LiveSession:
    if self._session is None or self._closed:
      raise SendError("Upstream session is not open")
    return self._session

  async def send_audio(self, pcm: bytes) -> None:
    """Forward one frame of 16 kHz PCM16 audio."""
    session = self._require_session()
    try:
      await session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=INPUT_AUDIO_MIME))
    except Exception as e:
      raise SendError(f"Audio send failed: {e}") from e

  async def send_text(self, text: str) -> None:
    """Forward a complete user text turn."""
    session = self._require_session()
    try:
      await session.send_client_content(
        turns=types.Content(role="user", parts=[types.Part(text=text)]), turn_complete=True
      )
    except Exception as e:
      raise SendError(f"Text send failed: {e}") from e

  async def events(self) -> AsyncIterator[UpstreamEvent]:
    """
    Yield normalized events until the session ends.

    The stream always finishes with exactly one SessionClosed or SessionError event.
    """
    session = self._require_session()
    try:
      while not self._closed:
        received_any = False
        # receive() ends after each completed turn, so keep re-entering it
        async for message in session.receive():
          received_any = True
          for event in normalize_server_message(message, conversational=self.conversational):
            yield event
        if not received_any:
          yield SessionClosed(code=1000, reason="Upstream stream ended")
          return
      yield SessionClosed(code=1000, reason="Session closed")
    except ConnectionClosed as e:
      code, reason = _close_details(e)
      logger.info("Upstream session closed", code=code, reason=reason)
      yield SessionClosed(code=code, reason=reason)
    except Exception as e:
      logger.exception("Upstream receive failed")
      yield SessionError(message=str(e) or type(e).__name__)

  async def close(self) -> None:
    """Release the session. Safe to call any number of times."""
    if self._closed:
      return
    self._closed = True
    stack, self._stack = self._stack, None
    if stack is not None:
      try:
        await stack.aclose()
      except Exception as e:
        logger.warning("Error closing upstream session", error=str(e))
      logger.debug("Upstream session released")


def _close_details(error: ConnectionClosed) -> tuple[int, str]:
  frame: Any = error.rcvd or error.sent
  if frame is None:
    return ABNORMAL_CLOSE, "Upstream connection lost"
  return frame.code, frame.reason or "Upstream connection closed"
