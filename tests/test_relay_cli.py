"""Tests for relay command line parsing."""

from stratchat.relay.__main__ import build_parser, get_env_or_default


class TestGetEnvOrDefault:
  def test_missing(self, monkeypatch):
    monkeypatch.delenv("STRATCHAT_PORT", raising=False)
    assert get_env_or_default("STRATCHAT_PORT", 3001, int) == 3001

  def test_int_conversion(self, monkeypatch):
    monkeypatch.setenv("STRATCHAT_PORT", "4000")
    assert get_env_or_default("STRATCHAT_PORT", None, int) == 4000

  def test_bad_int_falls_back(self, monkeypatch):
    monkeypatch.setenv("STRATCHAT_PORT", "many")
    assert get_env_or_default("STRATCHAT_PORT", 3001, int) == 3001

  def test_bool_conversion(self, monkeypatch):
    monkeypatch.setenv("JSON_LOGS", "yes")
    assert get_env_or_default("JSON_LOGS", False, bool) is True


class TestBuildParser:
  """Test flag parsing and env fallbacks."""

  def test_defaults(self, monkeypatch):
    for var in ("STRATCHAT_PORT", "STRATCHAT_HTTP_PORT", "STRATCHAT_CONFIG", "JSON_LOGS"):
      monkeypatch.delenv(var, raising=False)
    args = build_parser().parse_args([])
    assert args.port is None
    assert args.http_port is None
    assert args.config is None
    assert args.no_http is False
    assert args.json_logs is False

  def test_flags(self):
    args = build_parser().parse_args(
      ["--port", "4001", "--http_port", "4002", "--conversational", "--config", "relay.yaml"]
    )
    assert args.port == 4001
    assert args.http_port == 4002
    assert args.conversational is True
    assert args.config == "relay.yaml"

  def test_env_port(self, monkeypatch):
    monkeypatch.setenv("STRATCHAT_PORT", "5001")
    assert build_parser().parse_args([]).port == 5001
