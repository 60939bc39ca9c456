"""Tests for the audio framing codec."""

import base64
import struct

import numpy as np
import pytest

from stratchat.wire import (
  DecodeError,
  decode_pcm16_to_float,
  encode_pcm16,
  encode_wav,
  from_base64,
  sample_rate_from_mime,
  to_base64,
)


def pcm_values(data: bytes) -> list[int]:
  return np.frombuffer(data, dtype="<i2").tolist()


class TestEncodePCM16:
  """Test float to PCM16 quantization."""

  def test_clamps_out_of_range_samples(self):
    """Test that samples beyond +/-1 saturate at the int16 limits."""
    assert pcm_values(encode_pcm16([1.5, -1.5])) == [32767, -32768]

  def test_full_scale(self):
    """Test that exactly +/-1 map to the int16 limits."""
    assert pcm_values(encode_pcm16([1.0, -1.0, 0.0])) == [32767, -32768, 0]

  def test_half_scale(self):
    """Test mid-range quantization."""
    assert pcm_values(encode_pcm16([0.5, -0.5])) == [16384, -16384]

  def test_positive_and_negative_scales(self):
    """Test that positive samples scale by 32767 and negative samples by 32768."""
    assert pcm_values(encode_pcm16([0.75, 0.9999, -0.75, -0.9999])) == [
      24575,
      32764,
      -24576,
      -32765,
    ]

  def test_little_endian_two_bytes_per_sample(self):
    """Test the byte layout of the output."""
    data = encode_pcm16(np.array([0.5, -1.0], dtype=np.float32))
    assert len(data) == 4
    assert data[:2] == struct.pack("<h", 16384)
    assert data[2:] == struct.pack("<h", -32768)

  def test_empty_input(self):
    """Test that an empty buffer encodes to no bytes."""
    assert encode_pcm16(np.zeros(0, dtype=np.float32)) == b""


class TestDecodePCM16:
  """Test PCM16 to float conversion."""

  def test_divides_by_32768(self):
    """Test the scaling of decoded samples."""
    data = struct.pack("<3h", 16384, -32768, 32767)
    decoded = decode_pcm16_to_float(data)
    assert decoded.dtype == np.float32
    assert decoded.tolist() == pytest.approx([0.5, -1.0, 32767 / 32768])

  def test_round_trip_error_bounded(self):
    """Test that encode then decode stays within one and a half quantization steps."""
    rng = np.random.default_rng(7)
    samples = rng.uniform(-1.0, 1.0, 2000).astype(np.float32)
    decoded = decode_pcm16_to_float(encode_pcm16(samples))
    assert np.max(np.abs(decoded - samples)) <= 1.5 / 32768 + 1e-7

  def test_odd_length_rejected(self):
    """Test that a truncated sample is reported."""
    with pytest.raises(DecodeError, match="odd length"):
      decode_pcm16_to_float(b"\x00\x01\x02")


class TestBase64:
  """Test base64 wrapping."""

  def test_round_trip(self):
    """Test that bytes survive encoding and decoding."""
    payload = bytes(range(256))
    assert from_base64(to_base64(payload)) == payload

  def test_malformed_input_raises(self):
    """Test that invalid base64 raises DecodeError."""
    with pytest.raises(DecodeError):
      from_base64("not base64!!")

  def test_non_ascii_raises(self):
    """Test that non-ASCII text raises DecodeError rather than a bare ValueError."""
    with pytest.raises(DecodeError):
      from_base64("ÿÿÿÿ")


class TestEncodeWAV:
  """Test WAV container encoding."""

  def test_header_layout(self):
    """Test the RIFF header fields for a short mono clip."""
    samples = np.array([0.0, 0.5, -0.5, 1.0], dtype=np.float32)
    wav = base64.b64decode(encode_wav(samples, 16000))

    assert len(wav) == 44 + 2 * len(samples)
    assert wav[0:4] == b"RIFF"
    assert struct.unpack_from("<I", wav, 4)[0] == 36 + 2 * len(samples)
    assert wav[8:12] == b"WAVE"
    assert wav[12:16] == b"fmt "
    assert struct.unpack_from("<I", wav, 16)[0] == 16
    assert struct.unpack_from("<H", wav, 20)[0] == 1
    assert struct.unpack_from("<H", wav, 22)[0] == 1
    assert struct.unpack_from("<I", wav, 24)[0] == 16000
    assert struct.unpack_from("<I", wav, 28)[0] == 32000
    assert struct.unpack_from("<H", wav, 32)[0] == 2
    assert struct.unpack_from("<H", wav, 34)[0] == 16
    assert wav[36:40] == b"data"
    assert struct.unpack_from("<I", wav, 40)[0] == 2 * len(samples)
    assert wav[44:] == encode_pcm16(samples)

  def test_sample_rate_written(self):
    """Test that the requested rate lands at offset 24."""
    wav = base64.b64decode(encode_wav(np.zeros(10, dtype=np.float32), 24000))
    assert struct.unpack_from("<I", wav, 24)[0] == 24000


class TestSampleRateFromMime:
  """Test extraction of the rate parameter."""

  def test_rate_parameter(self):
    assert sample_rate_from_mime("audio/pcm;rate=24000") == 24000

  def test_missing_rate_uses_default(self):
    assert sample_rate_from_mime("audio/pcm", default=16000) == 16000
    assert sample_rate_from_mime(None) == 24000
