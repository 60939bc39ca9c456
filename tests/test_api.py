"""Tests for the relay's analysis HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from stratchat.relay.analysis import (
  AnalysisError,
  AnalysisService,
  Summary,
  parse_json_reply,
)
from stratchat.relay.api import create_app
from stratchat.relay.config import AnalysisConfig
from stratchat.wire import encode_wav, from_base64


class FakeAnalyzer:
  def __init__(self, fail: bool = False):
    self.fail = fail
    self.refined: list[str] = []

  async def summarize(self, text: str) -> Summary:
    if self.fail:
      raise AnalysisError("model unavailable")
    return Summary(summary=f"About {text}", mood="Calm")

  async def strategy(self, text: str) -> str:
    return "## Strategy"

  async def question(self, text: str) -> str:
    return "What would change your mind?"

  async def refine(self, wav_base64: str) -> str:
    from_base64(wav_base64)
    self.refined.append(wav_base64)
    return "refined words"


@pytest.fixture
def analyzer():
  return FakeAnalyzer()


@pytest.fixture
def client(analyzer):
  return TestClient(create_app(analyzer))


class TestEndpoints:
  """Test the four analysis endpoints."""

  def test_summary(self, client):
    response = client.post("/api/summary", json={"text": "pricing"})
    assert response.status_code == 200
    assert response.json() == {"summary": "About pricing", "mood": "Calm"}

  def test_strategy(self, client):
    response = client.post("/api/strategy", json={"text": "transcript"})
    assert response.json() == {"strategy": "## Strategy"}

  def test_question(self, client):
    response = client.post("/api/question", json={"text": "snippet"})
    assert response.json() == {"question": "What would change your mind?"}

  def test_refine(self, client, analyzer):
    wav = encode_wav([0.0, 0.1, -0.1])
    response = client.post("/api/refine", json={"audio": wav})
    assert response.status_code == 200
    assert response.json() == {"text": "refined words"}
    assert analyzer.refined == [wav]

  def test_empty_text_rejected(self, client):
    """Test that request validation rejects empty input."""
    assert client.post("/api/summary", json={"text": ""}).status_code == 422
    assert client.post("/api/question", json={}).status_code == 422

  def test_bad_audio_is_400(self, client):
    """Test that malformed base64 is a client error."""
    response = client.post("/api/refine", json={"audio": "%%%"})
    assert response.status_code == 400
    assert "error" in response.json()

  def test_analysis_failure_is_500(self):
    """Test that model failures map to a 500 with an error body."""
    client = TestClient(create_app(FakeAnalyzer(fail=True)))
    response = client.post("/api/summary", json={"text": "x"})
    assert response.status_code == 500
    assert response.json() == {"error": "model unavailable"}


class TestParseJsonReply:
  """Test lenient JSON extraction from model replies."""

  def test_plain_json(self):
    assert parse_json_reply('{"summary": "s", "mood": "m"}') == {"summary": "s", "mood": "m"}

  def test_code_fenced_json(self):
    reply = '```json\n{"summary": "s", "mood": "Anxious"}\n```'
    assert parse_json_reply(reply)["mood"] == "Anxious"

  def test_surrounding_prose(self):
    reply = 'Here you go: {"summary": "s", "mood": "m"} Hope that helps.'
    assert parse_json_reply(reply)["summary"] == "s"

  def test_no_json(self):
    with pytest.raises(AnalysisError, match="no JSON"):
      parse_json_reply("I cannot help with that.")

  def test_empty(self):
    with pytest.raises(AnalysisError, match="Empty"):
      parse_json_reply("")


class FakeResponse:
  def __init__(self, text: str):
    self.text = text


class FakeModels:
  def __init__(self, reply: str):
    self.reply = reply
    self.calls: list[dict] = []

  async def generate_content(self, *, model, contents):
    self.calls.append({"model": model, "contents": contents})
    return FakeResponse(self.reply)


class FakeGenaiClient:
  def __init__(self, reply: str):
    self.models = FakeModels(reply)
    self.aio = self


class TestAnalysisService:
  """Test the google-genai backed service against a fake client."""

  def test_summary_uses_summary_model(self):
    client = FakeGenaiClient('```json\n{"summary": "Budget talk", "mood": "Tense"}\n```')
    service = AnalysisService(client, AnalysisConfig(summary_model="lite"))

    summary = asyncio.run(service.summarize("we need to cut costs"))

    assert summary == Summary(summary="Budget talk", mood="Tense")
    assert client.models.calls[0]["model"] == "lite"
    assert "we need to cut costs" in client.models.calls[0]["contents"]

  def test_summary_missing_fields(self):
    service = AnalysisService(FakeGenaiClient('{"summary": "only"}'), AnalysisConfig())
    with pytest.raises(AnalysisError, match="missing fields"):
      asyncio.run(service.summarize("x"))

  def test_refine_sends_wav_part(self):
    client = FakeGenaiClient("  exact words \n")
    service = AnalysisService(client, AnalysisConfig(refine_model="flash"))

    text = asyncio.run(service.refine(encode_wav([0.0, 0.25])))

    assert text == "exact words"
    contents = client.models.calls[0]["contents"]
    assert contents.parts[0].inline_data.mime_type == "audio/wav"
    assert contents.parts[0].inline_data.data[:4] == b"RIFF"
