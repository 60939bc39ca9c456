"""Tests for transcript entries, the transcript log and turn assembly."""

import itertools

import numpy as np
import pytest

from stratchat.client.buffer import AudioChunkBuffer
from stratchat.client.transcript import (
  LAG_THRESHOLD,
  Speaker,
  TranscriptAssembler,
  TranscriptEntry,
  TranscriptLog,
)


class FakeClock:
  def __init__(self, now: float = 1000.0):
    self.now = now

  def __call__(self) -> float:
    return self.now


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def buffer():
  return AudioChunkBuffer(sample_rate=16000)


class Recorder:
  def __init__(self):
    self.entries: list[TranscriptEntry] = []
    self.handoffs: list[tuple[str, np.ndarray]] = []

  def on_entry(self, entry: TranscriptEntry) -> None:
    self.entries.append(entry)

  def on_turn_complete(self, entry_id: str, audio: np.ndarray) -> None:
    self.handoffs.append((entry_id, audio))


@pytest.fixture
def recorder():
  return Recorder()


@pytest.fixture
def assembler(buffer, recorder, clock):
  counter = itertools.count(1)
  return TranscriptAssembler(
    buffer,
    on_entry=recorder.on_entry,
    on_turn_complete=recorder.on_turn_complete,
    id_factory=lambda: str(next(counter)),
    clock=clock,
  )


class TestTranscriptAssembler:
  """Test folding of fragments into turns."""

  def test_fragments_merge_into_one_entry(self, assembler, recorder):
    """Test that one turn's fragments share an id and grow the text."""
    assembler.add_fragment("Hel")
    assembler.add_fragment("lo")

    assert [e.text for e in recorder.entries] == ["Hel", "Hello"]
    assert {e.id for e in recorder.entries} == {"1"}
    assert all(not e.is_final for e in recorder.entries)
    assert all(e.speaker == Speaker.PRIMARY for e in recorder.entries)

  def test_turn_complete_finalizes_and_hands_off_audio(self, assembler, recorder, buffer):
    """Test that completion emits a final entry and passes its audio under the same id."""
    buffer.append(np.full(4, 0.1, dtype=np.float32))
    assembler.add_fragment("Hel")
    buffer.append(np.full(4, 0.2, dtype=np.float32))
    assembler.add_fragment("lo")

    final = assembler.complete_turn()

    assert final is not None
    assert recorder.entries[-1].text == "Hello"
    assert recorder.entries[-1].is_final is True
    assert recorder.entries[-1].is_refined is False
    entry_id, audio = recorder.handoffs[0]
    assert entry_id == "1"
    assert len(audio) == 8
    assert len(buffer) == 0
    assert assembler.open_entry is None

  def test_next_fragment_opens_new_turn(self, assembler, recorder):
    """Test that a fragment after completion starts a fresh entry."""
    assembler.add_fragment("One")
    assembler.complete_turn()
    assembler.add_fragment("Two")

    assert recorder.entries[-1].id == "2"
    assert recorder.entries[-1].text == "Two"

  def test_empty_turn_only_clears_buffer(self, assembler, recorder, buffer):
    """Test that completion without text emits nothing and discards audio."""
    buffer.append(np.ones(16, dtype=np.float32))

    assert assembler.complete_turn() is None
    assert recorder.entries == []
    assert recorder.handoffs == []
    assert len(buffer) == 0

  def test_empty_fragment_ignored(self, assembler, recorder):
    """Test that empty fragments do not open a turn."""
    assert assembler.add_fragment("") is None
    assert assembler.open_entry is None
    assert recorder.entries == []

  def test_assistant_entries_are_single_shot(self, assembler, recorder):
    """Test that assistant text never merges and is final on arrival."""
    assembler.add_fragment("Hi")
    assembler.add_assistant_text("Ask about")
    assembler.add_assistant_text("their timeline.")

    assistant = [e for e in recorder.entries if e.speaker == Speaker.ASSISTANT]
    assert [e.text for e in assistant] == ["Ask about", "their timeline."]
    assert all(e.is_final for e in assistant)
    assert len({e.id for e in assistant}) == 2
    assert assembler.open_entry.text == "Hi"

  def test_emitted_entries_are_snapshots(self, assembler, recorder):
    """Test that later fragments do not mutate previously emitted entries."""
    assembler.add_fragment("A")
    assembler.add_fragment("B")
    assert recorder.entries[0].text == "A"

  def test_last_updated_tracks_fragments(self, assembler, recorder, clock):
    assembler.add_fragment("A")
    clock.now += 1.0
    assembler.add_fragment("B")
    assert recorder.entries[-1].timestamp == 1000.0
    assert recorder.entries[-1].last_updated == 1001.0


class TestLagging:
  """Test the derived lagging flag."""

  def test_lagging_after_threshold(self):
    entry = TranscriptEntry(
      id="1", speaker=Speaker.PRIMARY, text="Hi", timestamp=0.0, last_updated=10.0
    )
    assert not entry.is_lagging(now=10.0 + LAG_THRESHOLD)
    assert entry.is_lagging(now=10.0 + LAG_THRESHOLD + 0.1)

  def test_final_entries_never_lag(self):
    entry = TranscriptEntry(
      id="1", speaker=Speaker.PRIMARY, text="Hi", last_updated=0.0, is_final=True
    )
    assert not entry.is_lagging(now=1e9)


class TestTranscriptLog:
  """Test the ordered transcript store."""

  def make(self, entry_id: str, text: str, **kwargs) -> TranscriptEntry:
    return TranscriptEntry(id=entry_id, speaker=Speaker.PRIMARY, text=text, **kwargs)

  def test_upsert_keeps_order(self):
    log = TranscriptLog()
    log.upsert(self.make("a", "first"))
    log.upsert(self.make("b", "second"))
    log.upsert(self.make("a", "first, longer"))

    assert [e.text for e in log.entries] == ["first, longer", "second"]
    assert len(log) == 2

  def test_apply_refinement_by_id(self):
    """Test that refinement only touches the targeted entry."""
    changes: list[TranscriptEntry] = []
    log = TranscriptLog(on_change=changes.append)
    log.upsert(self.make("1", "helo wrld", is_final=True))
    log.upsert(self.make("2", "second turn"))

    assert log.apply_refinement("1", "Hello world")

    assert log.get("1").text == "Hello world"
    assert log.get("1").is_refined is True
    assert log.get("2").text == "second turn"
    assert log.get("2").is_refined is False
    assert changes[-1].id == "1"

  def test_refinement_keeps_timestamps(self):
    """Test that refinement changes only the text and the refined flag."""
    log = TranscriptLog()
    log.upsert(self.make("a", "raw", timestamp=1.0, last_updated=2.0, is_final=True))

    log.apply_refinement("a", "refined")

    entry = log.get("a")
    assert entry.text == "refined"
    assert entry.is_refined is True
    assert entry.timestamp == 1.0
    assert entry.last_updated == 2.0
    assert entry.is_final is True
    assert entry.speaker == Speaker.PRIMARY

  def test_refinement_for_unknown_entry(self):
    assert TranscriptLog().apply_refinement("missing", "text") is False

  def test_upsert_preserves_refinement(self):
    """Test that a later update of a refined entry keeps the refined text."""
    log = TranscriptLog()
    log.upsert(self.make("1", "raw", is_final=True))
    log.apply_refinement("1", "Refined")
    log.upsert(self.make("1", "raw", is_final=True))

    assert log.get("1").text == "Refined"
    assert log.get("1").is_refined is True

  def test_export_text(self):
    log = TranscriptLog()
    log.upsert(self.make("1", "Hello", timestamp=0.0))
    log.apply_refinement("1", "Hello there")
    log.upsert(
      TranscriptEntry(id="2", speaker=Speaker.ASSISTANT, text="Ask why.", timestamp=0.0)
    )

    lines = log.export_text().splitlines()
    assert lines[0].endswith("primary-speaker: Hello there (Verified)")
    assert lines[1].endswith("assistant: Ask why.")

  def test_by_speaker(self):
    log = TranscriptLog()
    log.upsert(self.make("1", "me"))
    log.upsert(TranscriptEntry(id="2", speaker=Speaker.ASSISTANT, text="tip"))
    assert [e.id for e in log.by_speaker(Speaker.ASSISTANT)] == ["2"]
