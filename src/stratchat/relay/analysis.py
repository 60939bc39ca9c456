"""One-shot text and audio analysis calls behind the relay's HTTP API."""

import json
import re
from typing import Any, Protocol

from google import genai
from google.genai import types
from pydantic import BaseModel

from stratchat.common import get_logger
from stratchat.relay.config import AnalysisConfig
from stratchat.wire import from_base64

logger = get_logger("relay/analysis")

SUMMARY_PROMPT = """\
Analyze the following transcript of a conversation.
Provide a "Quick Summary" (2-3 sentences max) capturing the core topic.
Then, determine the overall "Emotional Mood" of the primary speaker (e.g., Anxious, Confident, \
Defensive).

Format the output EXACTLY like this JSON:
{{
  "summary": "...",
  "mood": "..."
}}

Transcript:
{text}
"""

STRATEGY_PROMPT = """\
You are a high-level negotiation and communication strategist.
Analyze the transcript below.
Identify hidden motivations, psychological leverage points, and suggest a long-term strategy.

Output in Markdown format.

Transcript:
{text}
"""

QUESTION_PROMPT = """\
Based on this recent conversation snippet, generate ONE high-impact strategic question the \
primary speaker can ask to take control or deepen understanding.
Snippet: {text}
"""

REFINE_PROMPT = """\
Please transcribe the spoken audio exactly.
Correct any obvious phonetic misinterpretations.
Return ONLY the text.
"""

_CODE_FENCE = re.compile(r"```(?:json)?")


class AnalysisError(Exception):
  """A model call failed or returned something unusable."""


class Summary(BaseModel):
  summary: str
  mood: str


def parse_json_reply(text: str | None) -> dict[str, Any]:
  """
  Parse a JSON object out of a model reply, tolerating markdown code fences and stray prose
  around the object.
  """
  if not text:
    raise AnalysisError("Empty response")
  cleaned = _CODE_FENCE.sub("", text).strip()
  start, end = cleaned.find("{"), cleaned.rfind("}")
  if start == -1 or end <= start:
    raise AnalysisError("Response contains no JSON object")
  try:
    return json.loads(cleaned[start : end + 1])
  except json.JSONDecodeError as e:
    raise AnalysisError(f"Invalid JSON in response: {e}") from e


class Analyzer(Protocol):
  async def summarize(self, text: str) -> Summary: ...

  async def strategy(self, text: str) -> str: ...

  async def question(self, text: str) -> str: ...

  async def refine(self, wav_base64: str) -> str: ...


class AnalysisService:
  """
  Analysis backed by one-shot google-genai calls.

  :param client: An authenticated google-genai client.
  :param config: Which model serves each kind of request.
  """

  def __init__(self, client: genai.Client, config: AnalysisConfig):
    self.client = client
    self.config = config

  async def _generate(self, model: str, contents: Any) -> str:
    try:
      response = await self.client.aio.models.generate_content(model=model, contents=contents)
    except Exception as e:
      logger.error("Model call failed", model=model, error=str(e))
      raise AnalysisError(str(e)) from e
    return (response.text or "").strip()

  async def summarize(self, text: str) -> Summary:
    reply = await self._generate(self.config.summary_model, SUMMARY_PROMPT.format(text=text))
    data = parse_json_reply(reply)
    try:
      return Summary.model_validate(data)
    except ValueError as e:
      raise AnalysisError(f"Summary reply missing fields: {e}") from e

  async def strategy(self, text: str) -> str:
    return await self._generate(self.config.strategy_model, STRATEGY_PROMPT.format(text=text))

  async def question(self, text: str) -> str:
    return await self._generate(self.config.question_model, QUESTION_PROMPT.format(text=text))

  async def refine(self, wav_base64: str) -> str:
    """Re-transcribe a WAV clip with the higher-accuracy model."""
    audio = types.Part.from_bytes(data=from_base64(wav_base64), mime_type="audio/wav")
    contents = types.Content(role="user", parts=[audio, types.Part(text=REFINE_PROMPT)])
    text = await self._generate(self.config.refine_model, contents)
    logger.debug("Refined clip", chars=len(text))
    return text
