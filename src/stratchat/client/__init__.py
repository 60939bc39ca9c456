"""
Client side of stratchat: capture, relay transport, session control and transcript assembly.
"""

from stratchat.client.buffer import AudioChunkBuffer
from stratchat.client.config import BackoffPolicy, ClientSettings
from stratchat.client.connection import RelayConnection, TransportError
from stratchat.client.controller import ConnectionStatus, LiveSessionController, ReconnectExhausted
from stratchat.client.refinement import (
  HttpRefiner,
  RefinementFailure,
  RefinementReconciler,
  Refiner,
)
from stratchat.client.transcript import (
  LAG_THRESHOLD,
  Speaker,
  TranscriptAssembler,
  TranscriptEntry,
  TranscriptLog,
)

__all__ = [
  "AudioChunkBuffer",
  "BackoffPolicy",
  "ClientSettings",
  "ConnectionStatus",
  "HttpRefiner",
  "LAG_THRESHOLD",
  "LiveSessionController",
  "ReconnectExhausted",
  "RefinementFailure",
  "RefinementReconciler",
  "Refiner",
  "RelayConnection",
  "Speaker",
  "TranscriptAssembler",
  "TranscriptEntry",
  "TranscriptLog",
  "TransportError",
]
