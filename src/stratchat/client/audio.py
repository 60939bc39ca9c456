"""
Device-independent audio helpers for the client: frame mixing and playback scheduling.
"""

from collections.abc import Callable

import numpy as np

from stratchat.wire.audio import Samples

type FrameSink = Callable[[Samples], None]


class AudioUnavailable(Exception):
  """A required capture device could not be opened."""


def mix_frames(primary: Samples, secondary: Samples | None) -> Samples:
  """Sum two frames sample-wise and clip to [-1, 1]. The primary frame sets the length."""
  if secondary is None or secondary.size == 0:
    return primary
  mixed = primary.copy()
  n = min(primary.size, secondary.size)
  mixed[:n] += secondary[:n]
  return np.clip(mixed, -1.0, 1.0)


class PlaybackScheduler:
  """
  Gapless scheduling cursor for back-to-back audio chunks.

  Each chunk starts at ``max(now, next_play_time)`` and pushes the cursor forward by its
  duration, so chunks never overlap and play immediately after an idle period.
  """

  def __init__(self, clock: Callable[[], float]):
    self.clock = clock
    self.next_play_time = 0.0

  def schedule(self, duration: float) -> float:
    start = max(self.clock(), self.next_play_time)
    self.next_play_time = start + duration
    return start

  def reset(self) -> None:
    self.next_play_time = 0.0
