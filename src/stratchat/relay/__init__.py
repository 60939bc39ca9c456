"""
Relay server: one upstream live session per connected client, plus the analysis HTTP API.
"""

from stratchat.relay.config import RelayConfig, load_config_from_file
from stratchat.relay.session import HandshakeState, RelaySession
from stratchat.relay.upstream import (
  ConnectError,
  SendError,
  UpstreamError,
  UpstreamSessionAdapter,
  UpstreamSessionConfig,
)

__all__ = [
  "ConnectError",
  "HandshakeState",
  "RelayConfig",
  "RelaySession",
  "SendError",
  "UpstreamError",
  "UpstreamSessionAdapter",
  "UpstreamSessionConfig",
  "load_config_from_file",
]
