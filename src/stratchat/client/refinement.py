"""
Second-pass transcription of completed turns.

Each finalized turn's audio is wrapped as WAV and sent to a slower, more accurate transcriber.
A non-empty result replaces the entry's text; any failure leaves the live transcript as it was.
"""

import asyncio
from typing import Protocol

import httpx

from stratchat.client.transcript import TranscriptLog
from stratchat.common import Seconds, get_logger
from stratchat.wire import INPUT_SAMPLE_RATE, encode_wav
from stratchat.wire.audio import Samples

logger = get_logger("client/refine")


class RefinementFailure(Exception):
  """The refinement collaborator could not produce text."""


class Refiner(Protocol):
  async def refine(self, wav_base64: str) -> str | None:
    """Return corrected text for the clip, or None if nothing usable came back."""
    ...


class HttpRefiner:
  """
  Posts clips to the relay's ``/api/refine`` endpoint.

  :param url: Full endpoint URL.
  :param timeout: Request timeout in seconds.
  :param transport: Optional httpx transport, e.g. a mock in tests.
  """

  def __init__(
    self, url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None
  ):
    self.url = url
    self.timeout = timeout
    self.transport = transport

  async def refine(self, wav_base64: str) -> str | None:
    try:
      async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
        r = await client.post(self.url, json={"audio": wav_base64})
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
      raise RefinementFailure(str(e) or type(e).__name__) from e

    text = data.get("text") if isinstance(data, dict) else None
    return text.strip() if isinstance(text, str) else None


class RefinementReconciler:
  """
  Runs refinements in the background and merges results into the transcript by entry id.

  :param log: Transcript the refined text is written into.
  :param refiner: Collaborator that re-transcribes a WAV clip.
  :param sample_rate: Rate of the audio handed in with each turn.
  """

  def __init__(self, log: TranscriptLog, refiner: Refiner, sample_rate: int = INPUT_SAMPLE_RATE):
    self.log = log
    self.refiner = refiner
    self.sample_rate = sample_rate
    self._background_tasks: set[asyncio.Task] = set()

  def submit(self, entry_id: str, audio: Samples) -> None:
    """Schedule refinement of one finalized turn. Must be called from the event loop."""
    if len(audio) == 0:
      logger.debug("No audio for turn, skipping refinement", entry_id=entry_id)
      return
    task = asyncio.create_task(self.reconcile(entry_id, audio), name=f"refine-{entry_id}")
    self._background_tasks.add(task)
    task.add_done_callback(self._background_tasks.discard)

  async def reconcile(self, entry_id: str, audio: Samples) -> bool:
    """Refine one turn. Returns True if the transcript was updated."""
    payload = encode_wav(audio, self.sample_rate)
    try:
      text = await self.refiner.refine(payload)
    except Exception as e:
      logger.warning("Refinement failed", entry_id=entry_id, error=str(e))
      return False

    if not text:
      logger.debug("Refinement returned nothing", entry_id=entry_id)
      return False

    updated = self.log.apply_refinement(entry_id, text)
    if updated:
      logger.info(
        "Entry refined",
        entry_id=entry_id,
        clip=Seconds(len(audio) / self.sample_rate),
      )
    return updated

  @property
  def pending(self) -> int:
    return len(self._background_tasks)

  async def drain(self) -> None:
    """Wait for every in-flight refinement to finish."""
    if self._background_tasks:
      await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
