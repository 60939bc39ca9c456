import numpy as np

from stratchat.wire.audio import Samples


class AudioChunkBuffer:
  """
  Accumulates captured frames for the turn in progress.

  Frames are appended by the capture path as they are sent upstream and drained in one piece
  when the turn completes, so the refinement clip covers exactly the audio of that turn.
  """

  def __init__(self, sample_rate: int):
    self.sample_rate = sample_rate
    self._chunks: list[Samples] = []
    self._samples = 0

  def append(self, frame: Samples) -> None:
    chunk = np.asarray(frame, dtype=np.float32).reshape(-1)
    if chunk.size:
      self._chunks.append(chunk)
      self._samples += chunk.size

  def drain(self) -> Samples:
    """Return all buffered audio as one array and empty the buffer."""
    if not self._chunks:
      return np.zeros(0, dtype=np.float32)
    audio = np.concatenate(self._chunks)
    self.clear()
    return audio

  def clear(self) -> None:
    self._chunks = []
    self._samples = 0

  @property
  def duration(self) -> float:
    """Buffered audio in seconds."""
    return self._samples / self.sample_rate

  def __len__(self) -> int:
    return self._samples
