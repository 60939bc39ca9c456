"""
Sound device capture and playback for the stratchat client.

Capture opens the primary speaker's microphone and, optionally, a loopback device carrying the
other side of the conversation, and mixes them into one mono 16 kHz frame stream. Playback
queues the model's spoken replies back-to-back on one output stream.
"""

import threading
from collections import deque

import numpy as np
import sounddevice as sd

from stratchat.client.audio import AudioUnavailable, FrameSink, PlaybackScheduler, mix_frames
from stratchat.client.config import ClientSettings
from stratchat.common import get_logger
from stratchat.wire import OUTPUT_SAMPLE_RATE
from stratchat.wire.audio import Samples

CHANNELS = 1
DTYPE = np.float32

logger = get_logger("client/devices")


class AudioSource:
  """
  One PortAudio input stream delivering mono float32 frames.

  :param name: Label used in logs.
  :param device: PortAudio device index or name; None selects the default input.
  :param on_frame: Called from the audio thread with each captured frame.
  """

  def __init__(
    self,
    name: str,
    device: int | str | None,
    sample_rate: int,
    block_size: int,
    on_frame: FrameSink,
  ):
    self.name = name
    self.device = device
    self.sample_rate = sample_rate
    self.block_size = block_size
    self.on_frame = on_frame
    self.stream: sd.InputStream | None = None

  def check(self) -> None:
    """
    Verify the device can capture mono float32 at the configured rate.

    :raises AudioUnavailable: If it cannot.
    """
    try:
      sd.check_input_settings(
        device=self.device, channels=CHANNELS, dtype="float32", samplerate=self.sample_rate
      )
    except Exception as e:
      raise AudioUnavailable(f"{self.name} device {self.device!r} unavailable: {e}") from e

  def audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
    """Sounddevice audio callback."""
    if status:
      logger.debug("Audio status", source=self.name, status=str(status))
    self.on_frame(indata[:, 0].astype(DTYPE, copy=True))

  def start(self) -> None:
    if self.stream is not None:
      return
    try:
      self.stream = sd.InputStream(
        device=self.device,
        channels=CHANNELS,
        samplerate=self.sample_rate,
        dtype=DTYPE,
        latency="low",
        blocksize=self.block_size,
        callback=self.audio_callback,
      )
      self.stream.start()
    except Exception as e:
      self.stream = None
      raise AudioUnavailable(f"Error starting {self.name} audio: {e}") from e
    logger.info("Capture started", source=self.name, device=self.device, rate=self.sample_rate)

  def stop(self) -> None:
    stream, self.stream = self.stream, None
    if stream is None:
      return
    try:
      stream.stop()
      stream.close()
    except Exception as e:
      logger.warning("Error stopping audio", source=self.name, error=str(e))


class CaptureGraph:
  """
  Microphone capture with optional display/system audio mixed in.

  The microphone is mandatory. The display source is best-effort: if it cannot be opened the
  graph runs on the microphone alone.

  :param settings: Devices, rate and frame size.
  :param on_frame: Receives mixed frames, called from the audio thread.
  """

  def __init__(self, settings: ClientSettings, on_frame: FrameSink):
    self.on_frame = on_frame
    self.microphone = AudioSource(
      "microphone",
      settings.microphone_device,
      settings.sample_rate,
      settings.block_size,
      self._on_microphone_frame,
    )
    self.display: AudioSource | None = None
    if settings.display_device is not None:
      self.display = AudioSource(
        "display",
        settings.display_device,
        settings.sample_rate,
        settings.block_size,
        self._on_display_frame,
      )
    self._display_frames: deque[Samples] = deque(maxlen=4)
    self.running = False

  def _on_display_frame(self, frame: Samples) -> None:
    self._display_frames.append(frame)

  def _on_microphone_frame(self, frame: Samples) -> None:
    try:
      secondary = self._display_frames.popleft()
    except IndexError:
      secondary = None
    self.on_frame(mix_frames(frame, secondary))

  def start(self) -> None:
    """
    Open the microphone and, if configured, the display source.

    :raises AudioUnavailable: If the microphone cannot be opened.
    """
    if self.running:
      return
    self.microphone.check()
    self.microphone.start()

    if self.display is not None:
      try:
        self.display.check()
        self.display.start()
      except AudioUnavailable as e:
        logger.warning("Display audio unavailable, continuing with microphone only", error=str(e))
        self.display = None
    self.running = True

  def stop(self) -> None:
    """Release every device. Safe to call repeatedly."""
    if self.display is not None:
      self.display.stop()
    self.microphone.stop()
    self._display_frames.clear()
    self.running = False


class AudioPlayback:
  """
  Plays model audio on one output stream, queued in arrival order.

  The stream's own sample clock drives the scheduler: a chunk queued behind others starts when
  they finish, a chunk arriving after the queue ran dry starts right away.
  """

  def __init__(self, sample_rate: int = OUTPUT_SAMPLE_RATE, device: int | str | None = None):
    self.sample_rate = sample_rate
    self.device = device
    self.scheduler = PlaybackScheduler(self.stream_time)
    self.stream: sd.OutputStream | None = None
    self._queue: deque[Samples] = deque()
    self._offset = 0
    self._frames_played = 0
    self._lock = threading.Lock()

  def stream_time(self) -> float:
    return self._frames_played / self.sample_rate

  def _ensure_stream(self) -> None:
    if self.stream is not None:
      return
    self.stream = sd.OutputStream(
      device=self.device,
      channels=CHANNELS,
      samplerate=self.sample_rate,
      dtype=DTYPE,
      callback=self.audio_callback,
    )
    self.stream.start()

  def audio_callback(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
    written = 0
    with self._lock:
      while written < frames and self._queue:
        chunk = self._queue[0]
        take = min(frames - written, chunk.size - self._offset)
        outdata[written : written + take, 0] = chunk[self._offset : self._offset + take]
        written += take
        self._offset += take
        if self._offset >= chunk.size:
          self._queue.popleft()
          self._offset = 0
      self._frames_played += frames
    outdata[written:, 0] = 0.0

  def play(self, samples: Samples, sample_rate: int) -> float | None:
    """Queue a chunk. Returns its scheduled start in stream seconds, or None if dropped."""
    if samples.size == 0:
      return None
    if sample_rate != self.sample_rate:
      logger.warning("Dropping playback chunk at unexpected rate", rate=sample_rate)
      return None
    self._ensure_stream()
    with self._lock:
      start = self.scheduler.schedule(samples.size / self.sample_rate)
      self._queue.append(samples.astype(DTYPE, copy=False))
    return start

  def reset(self) -> None:
    """Drop anything queued and close the output stream."""
    with self._lock:
      self._queue.clear()
      self._offset = 0
      self.scheduler.reset()
    stream, self.stream = self.stream, None
    if stream is not None:
      stream.stop()
      stream.close()


def list_input_devices() -> list[dict]:
  """Input-capable PortAudio devices with their index."""
  return [
    {"index": index, **device}
    for index, device in enumerate(sd.query_devices())
    if device["max_input_channels"] > 0
  ]
