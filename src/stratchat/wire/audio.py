"""
Audio framing codec.

Converts between float32 sample buffers in [-1.0, 1.0] and the wire representations used
between the client, the relay and the realtime model: little-endian signed 16-bit PCM,
base64 text and a minimal mono WAV container.
"""

import base64
import binascii
import struct

import numpy as np
import numpy.typing as npt

INPUT_SAMPLE_RATE = 16000
"""Capture rate of client audio sent to the model, in Hz."""

OUTPUT_SAMPLE_RATE = 24000
"""Rate of the PCM audio the model speaks back, in Hz."""

INPUT_AUDIO_MIME = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

WAV_HEADER_SIZE = 44

type Samples = npt.NDArray[np.float32]


class DecodeError(ValueError):
  """Raised when a wire payload cannot be decoded into audio bytes."""


def encode_pcm16(samples: npt.ArrayLike) -> bytes:
  """
  Quantize float samples to little-endian signed 16-bit PCM.

  Samples are clamped to [-1.0, 1.0], then negative samples are scaled by 32768 and the rest
  by 32767, so 1.0 and above map to 32767 and -1.0 and below map to -32768.

  :param samples: Float samples, nominally in [-1.0, 1.0].
  :returns: Two bytes per sample, little-endian.
  """
  clamped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
  scaled = np.round(np.where(clamped < 0, clamped * 32768.0, clamped * 32767.0))
  return scaled.astype("<i2").tobytes()


def decode_pcm16_to_float(data: bytes) -> Samples:
  """
  Convert little-endian signed 16-bit PCM to float32 samples by dividing by 32768.

  :raises DecodeError: If the byte length is odd.
  """
  if len(data) % 2:
    raise DecodeError(f"PCM16 payload has odd length {len(data)}")
  return (np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0).astype(np.float32)


def to_base64(data: bytes) -> str:
  """Encode raw bytes as standard base64 text."""
  return base64.b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
  """
  Decode standard base64 text.

  :raises DecodeError: If the text is not valid base64.
  """
  try:
    return base64.b64decode(text, validate=True)
  except (binascii.Error, ValueError) as e:
    raise DecodeError(f"Malformed base64 payload: {e}") from e


def wav_header(num_samples: int, sample_rate: int) -> bytes:
  """Build the 44-byte RIFF/WAVE header for mono 16-bit PCM."""
  data_length = num_samples * 2
  return struct.pack(
    "<4sI4s4sIHHIIHH4sI",
    b"RIFF",
    36 + data_length,
    b"WAVE",
    b"fmt ",
    16,  # fmt chunk size
    1,  # PCM
    1,  # mono
    sample_rate,
    sample_rate * 2,  # byte rate
    2,  # block align
    16,  # bits per sample
    b"data",
    data_length,
  )


def encode_wav_bytes(samples: npt.ArrayLike, sample_rate: int = INPUT_SAMPLE_RATE) -> bytes:
  """Wrap float samples in a mono 16-bit PCM WAV container."""
  pcm = encode_pcm16(samples)
  return wav_header(len(pcm) // 2, sample_rate) + pcm


def encode_wav(samples: npt.ArrayLike, sample_rate: int = INPUT_SAMPLE_RATE) -> str:
  """
  Encode float samples as a base64 WAV payload.

  Args:
      samples: Float samples; clamped and quantized like ``encode_pcm16``.
      sample_rate: Rate written to the header.

  Returns:
      Base64 text of the 44-byte header followed by the PCM data.
  """
  return to_base64(encode_wav_bytes(samples, sample_rate))


def sample_rate_from_mime(mime_type: str | None, default: int = OUTPUT_SAMPLE_RATE) -> int:
  """Extract the ``rate=`` parameter from an ``audio/pcm;rate=N`` mime type."""
  if not mime_type:
    return default
  for param in mime_type.split(";")[1:]:
    key, _, value = param.strip().partition("=")
    if key == "rate" and value.isdigit():
      return int(value)
  return default
