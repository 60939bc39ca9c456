import asyncio
from collections.abc import Awaitable, Callable
from http import HTTPStatus

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed, InvalidMessage
from websockets.http11 import Request, Response

from stratchat.common import get_logger


class WebSocketServer:
  """Websocket listener bound to a single path that contains per-connection failures."""

  def __init__(
    self,
    handler: Callable[[ServerConnection], Awaitable[None]],
    host: str,
    port: int,
    path: str = "/ws",
    **kwargs,
  ):
    self.handler = handler
    self.host = host
    self.port = port
    self.path = path
    self.kwargs = kwargs
    self.logger = get_logger("ws/server")

  def reject_unknown_path(self, connection: ServerConnection, request: Request) -> Response | None:
    if request.path.split("?", 1)[0] != self.path:
      self.logger.debug("Rejecting handshake", path=request.path)
      return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
    return None

  async def start(self, ready: asyncio.Event | None = None) -> None:
    self.logger.info("Starting WebSocket server", host=self.host, port=self.port, path=self.path)
    async with serve(
      self.error_handling_wrapper,
      self.host,
      self.port,
      process_request=self.reject_unknown_path,
      **self.kwargs,
    ):
      if ready is not None:
        ready.set()
      await asyncio.Future()  # run forever

  async def error_handling_wrapper(self, websocket: ServerConnection) -> None:
    """Run the handler, logging connection errors without taking the server down."""
    try:
      self.logger.info(
        "Connection begin", address=websocket.remote_address, websocket_id=websocket.id
      )
      await self.handler(websocket)
    except (EOFError, InvalidMessage):
      self.logger.debug("Connection failed handshake", websocket_id=websocket.id)
    except ConnectionClosed as e:
      self.logger.debug("Connection closed", error=str(e), websocket_id=websocket.id)
    except Exception:
      self.logger.exception("Connection unexpected error", websocket_id=websocket.id)
    finally:
      self.logger.info("Connection end", websocket_id=websocket.id)
