"""
Transcript entries and the assembly of streamed transcription fragments into turns.

The primary speaker's words arrive as many small fragments per turn. The assembler keeps one
open entry, grows it with each fragment, and closes it when the model signals the end of the
turn. Closing a non-empty turn hands that turn's audio off for refinement under the entry's id.
"""

import time
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from stratchat.client.buffer import AudioChunkBuffer
from stratchat.common import get_logger
from stratchat.wire.audio import Samples

logger = get_logger("client/transcript")

LAG_THRESHOLD = 2.5
"""Seconds without an update after which an open entry is considered lagging."""


class Speaker(StrEnum):
  PRIMARY = "primary-speaker"
  ASSISTANT = "assistant"


class TranscriptEntry(BaseModel):
  id: str
  speaker: Speaker
  text: str
  timestamp: float = Field(default_factory=time.time)
  """Creation time, seconds since the epoch."""

  last_updated: float = Field(default_factory=time.time)
  is_final: bool = False
  is_refined: bool = False

  def is_lagging(self, now: float | None = None, threshold: float = LAG_THRESHOLD) -> bool:
    """True while the entry is still open and has not grown for longer than ``threshold``."""
    if self.is_final:
      return False
    now = time.time() if now is None else now
    return now - self.last_updated > threshold


def new_entry_id() -> str:
  return uuid.uuid4().hex


class TranscriptLog:
  """
  Ordered transcript, keyed by entry id.

  Every stored change is reported to ``on_change`` with a copy of the entry as stored.
  """

  def __init__(self, on_change: Callable[[TranscriptEntry], None] | None = None):
    self.on_change = on_change
    self._entries: dict[str, TranscriptEntry] = {}

  def upsert(self, entry: TranscriptEntry) -> TranscriptEntry:
    """Insert or replace an entry. A refined entry keeps its refined text."""
    stored = entry.model_copy()
    existing = self._entries.get(entry.id)
    if existing is not None and existing.is_refined:
      stored.text = existing.text
      stored.is_refined = True
    self._entries[entry.id] = stored
    self._notify(stored)
    return stored

  def apply_refinement(self, entry_id: str, text: str) -> bool:
    """
    Replace the text of ``entry_id`` with refined text and mark it refined. Timestamps are left
    as they were. False if the entry is unknown.
    """
    entry = self._entries.get(entry_id)
    if entry is None:
      logger.warning("Refinement for unknown entry", entry_id=entry_id)
      return False
    entry.text = text
    entry.is_refined = True
    self._notify(entry)
    return True

  def get(self, entry_id: str) -> TranscriptEntry | None:
    return self._entries.get(entry_id)

  @property
  def entries(self) -> list[TranscriptEntry]:
    return list(self._entries.values())

  def by_speaker(self, speaker: Speaker) -> list[TranscriptEntry]:
    return [entry for entry in self._entries.values() if entry.speaker == speaker]

  def export_text(self) -> str:
    """Plain-text transcript, one line per entry."""
    lines = []
    for entry in self._entries.values():
      when = datetime.fromtimestamp(entry.timestamp).isoformat(timespec="seconds")
      suffix = " (Verified)" if entry.is_refined else ""
      lines.append(f"[{when}] {entry.speaker}: {entry.text}{suffix}")
    return "\n".join(lines)

  def _notify(self, entry: TranscriptEntry) -> None:
    if self.on_change is not None:
      self.on_change(entry.model_copy())

  def __len__(self) -> int:
    return len(self._entries)


type TurnHandoff = Callable[[str, Samples], None]


class TranscriptAssembler:
  """
  Folds partial transcripts and turn boundaries into transcript entries.

  :param buffer: Audio captured since the last turn boundary.
  :param on_entry: Receives every new or updated entry.
  :param on_turn_complete: Receives the id and audio of each finalized non-empty turn.
  :param id_factory: Produces ids that are never reused.
  :param clock: Source of ``timestamp``/``last_updated`` values.
  """

  def __init__(
    self,
    buffer: AudioChunkBuffer,
    on_entry: Callable[[TranscriptEntry], None],
    on_turn_complete: TurnHandoff | None = None,
    id_factory: Callable[[], str] = new_entry_id,
    clock: Callable[[], float] = time.time,
  ):
    self.buffer = buffer
    self.on_entry = on_entry
    self.on_turn_complete = on_turn_complete
    self.id_factory = id_factory
    self.clock = clock
    self._open: TranscriptEntry | None = None

  @property
  def open_entry(self) -> TranscriptEntry | None:
    return self._open

  def add_fragment(self, text: str) -> TranscriptEntry | None:
    """Append a transcription fragment to the open turn, opening one if needed."""
    if not text:
      return None

    now = self.clock()
    if self._open is None:
      self._open = TranscriptEntry(
        id=self.id_factory(),
        speaker=Speaker.PRIMARY,
        text=text,
        timestamp=now,
        last_updated=now,
      )
      logger.debug("Turn opened", entry_id=self._open.id)
    else:
      self._open.text += text
      self._open.last_updated = now

    self.on_entry(self._open.model_copy())
    return self._open

  def complete_turn(self) -> TranscriptEntry | None:
    """
    Close the open turn.

    A turn with text is emitted as final and its audio is handed off for refinement. An empty
    turn only discards the buffered audio. Returns the finalized entry, if any.
    """
    entry, self._open = self._open, None
    if entry is None or not entry.text:
      self.buffer.clear()
      return None

    entry.is_final = True
    entry.last_updated = self.clock()
    self.on_entry(entry.model_copy())

    audio = self.buffer.drain()
    if self.on_turn_complete is not None:
      self.on_turn_complete(entry.id, audio)
    logger.debug("Turn finalized", entry_id=entry.id, chars=len(entry.text), samples=len(audio))
    return entry

  def add_assistant_text(self, text: str) -> TranscriptEntry | None:
    """Record a single-shot assistant entry. It never merges and is final on arrival."""
    if not text:
      return None
    now = self.clock()
    entry = TranscriptEntry(
      id=self.id_factory(),
      speaker=Speaker.ASSISTANT,
      text=text,
      timestamp=now,
      last_updated=now,
      is_final=True,
    )
    self.on_entry(entry.model_copy())
    return entry
