"""Tests for refinement reconciliation and the HTTP refiner."""

import asyncio
import base64
import json

import httpx
import numpy as np
import pytest

from stratchat.client.refinement import HttpRefiner, RefinementFailure, RefinementReconciler
from stratchat.client.transcript import Speaker, TranscriptEntry, TranscriptLog


class FakeRefiner:
  def __init__(self, replies: dict[int, str | None] | None = None, error: Exception | None = None):
    self.replies = replies or {}
    self.error = error
    self.payloads: list[str] = []

  async def refine(self, wav_base64: str) -> str | None:
    self.payloads.append(wav_base64)
    if self.error is not None:
      raise self.error
    return self.replies.get(len(self.payloads), "refined")


def final_entry(entry_id: str, text: str) -> TranscriptEntry:
  return TranscriptEntry(id=entry_id, speaker=Speaker.PRIMARY, text=text, is_final=True)


@pytest.fixture
def log():
  log = TranscriptLog()
  log.upsert(final_entry("1", "turn A"))
  log.upsert(final_entry("2", "turn B"))
  return log


AUDIO = np.linspace(-0.5, 0.5, 320, dtype=np.float32)


class TestRefinementReconciler:
  """Test merging of refinement results into the transcript."""

  def test_success_replaces_text(self, log):
    """Test that refined text replaces the entry and marks it refined."""
    refiner = FakeRefiner({1: "Turn A, corrected"})
    reconciler = RefinementReconciler(log, refiner)

    assert asyncio.run(reconciler.reconcile("1", AUDIO))

    assert log.get("1").text == "Turn A, corrected"
    assert log.get("1").is_refined is True
    wav = base64.b64decode(refiner.payloads[0])
    assert wav[:4] == b"RIFF"
    assert len(wav) == 44 + 2 * len(AUDIO)

  def test_results_keyed_by_id_regardless_of_order(self, log):
    """Test that a late result for an earlier turn lands on that turn only."""
    class OrderedRefiner:
      def __init__(self):
        self.gate: asyncio.Event | None = None

      async def refine(self, wav_base64: str) -> str:
        if self.gate is None:
          self.gate = asyncio.Event()
          await self.gate.wait()
          return "A refined"
        self.gate.set()
        return "B refined"

    async def run():
      reconciler = RefinementReconciler(log, OrderedRefiner())
      reconciler.submit("1", AUDIO)
      await asyncio.sleep(0)
      reconciler.submit("2", AUDIO)
      await reconciler.drain()

    asyncio.run(run())

    assert log.get("1").text == "A refined"
    assert log.get("2").text == "B refined"

  def test_failure_degrades_silently(self, log):
    """Test that a collaborator failure leaves the entry untouched."""
    reconciler = RefinementReconciler(log, FakeRefiner(error=RefinementFailure("503")))

    assert asyncio.run(reconciler.reconcile("1", AUDIO)) is False

    assert log.get("1").text == "turn A"
    assert log.get("1").is_refined is False

  def test_empty_result_ignored(self, log):
    reconciler = RefinementReconciler(log, FakeRefiner({1: ""}))
    assert asyncio.run(reconciler.reconcile("1", AUDIO)) is False
    assert log.get("1").is_refined is False

  def test_no_audio_skips_refinement(self, log):
    refiner = FakeRefiner()

    async def run():
      reconciler = RefinementReconciler(log, refiner)
      reconciler.submit("1", np.zeros(0, dtype=np.float32))
      assert reconciler.pending == 0

    asyncio.run(run())
    assert refiner.payloads == []

  def test_drain_waits_for_slow_refinement(self, log):
    """Test that drain returns only after a suspended refinement has landed."""

    class Slow:
      async def refine(self, wav_base64: str) -> str:
        await asyncio.sleep(0.01)
        return "turn A, late"

    async def run():
      reconciler = RefinementReconciler(log, Slow())
      reconciler.submit("1", AUDIO)
      await reconciler.drain()
      return reconciler.pending

    assert asyncio.run(run()) == 0
    assert log.get("1").text == "turn A, late"
    assert log.get("1").is_refined is True


class TestHttpRefiner:
  """Test the HTTP collaborator against a mock transport."""

  def test_posts_audio_and_returns_text(self):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
      seen["url"] = str(request.url)
      seen["body"] = json.loads(request.content)
      return httpx.Response(200, json={"text": " Hello world \n"})

    refiner = HttpRefiner("http://relay/api/refine", transport=httpx.MockTransport(handler))

    assert asyncio.run(refiner.refine("UklGRg==")) == "Hello world"
    assert seen["url"] == "http://relay/api/refine"
    assert seen["body"] == {"audio": "UklGRg=="}

  def test_http_error_raises_refinement_failure(self):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "x"}))
    refiner = HttpRefiner("http://relay/api/refine", transport=transport)

    with pytest.raises(RefinementFailure):
      asyncio.run(refiner.refine("UklGRg=="))

  def test_missing_text_is_none(self):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"other": 1}))
    refiner = HttpRefiner("http://relay/api/refine", transport=transport)

    assert asyncio.run(refiner.refine("UklGRg==")) is None
