import asyncio
from collections.abc import Callable

import uvicorn
from google import genai
from websockets.asyncio.server import ServerConnection

from stratchat.common import get_logger
from stratchat.relay.analysis import AnalysisService
from stratchat.relay.api import create_app
from stratchat.relay.config import RelayConfig
from stratchat.relay.session import RelaySession
from stratchat.relay.upstream import LiveConnector, UpstreamSessionAdapter, gemini_connector
from stratchat.relay.websocket import WebSocketServer

type ApiServerFactory = Callable[[], uvicorn.Server]


class RelayServer:
  """
  Accepts client websocket connections and gives each one its own upstream live session.

  The analysis HTTP API runs in the same event loop on its own port.
  """

  def __init__(self, config: RelayConfig, connector: LiveConnector):
    self.config = config
    self.connector = connector
    self.sessions: dict[str, RelaySession] = {}
    self.logger = get_logger("relay")

  def new_adapter(self) -> UpstreamSessionAdapter:
    return UpstreamSessionAdapter(self.connector)

  async def handle_connection(self, websocket: ServerConnection) -> None:
    session_id = str(websocket.id)
    session = RelaySession(
      websocket,
      adapter_factory=self.new_adapter,
      upstream_config=self.config.upstream,
      session_id=session_id[:8],
    )
    self.sessions[session_id] = session
    self.logger.info("Client connected", active_sessions=len(self.sessions))
    try:
      await session.run()
    finally:
      self.sessions.pop(session_id, None)
      self.logger.info("Client disconnected", active_sessions=len(self.sessions))

  async def run(self, api_server_factory: ApiServerFactory | None = None) -> None:
    ws_server = WebSocketServer(
      self.handle_connection, self.config.host, self.config.port, path=self.config.path
    )
    tasks = [asyncio.create_task(ws_server.start(), name="ws-server")]
    if api_server_factory is not None:
      tasks.append(asyncio.create_task(api_server_factory().serve(), name="http-api"))

    try:
      done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
      for task in done:
        task.result()
    finally:
      for task in tasks:
        task.cancel()
      await asyncio.gather(*tasks, return_exceptions=True)


def build_server(config: RelayConfig, api_key: str) -> tuple[RelayServer, ApiServerFactory | None]:
  """Wire a relay server and, if enabled, its HTTP API onto one google-genai client."""
  client = genai.Client(api_key=api_key)
  relay = RelayServer(config, gemini_connector(client))

  http_port = config.http_port
  if http_port is None:
    return relay, None

  def api_server() -> uvicorn.Server:
    app = create_app(AnalysisService(client, config.analysis))
    return uvicorn.Server(
      uvicorn.Config(app, host=config.host, port=http_port, log_config=None, lifespan="off")
    )

  return relay, api_server
