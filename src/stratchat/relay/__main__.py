import argparse
import asyncio
import os

from dotenv import load_dotenv

from stratchat.common import get_logger, setup_logging


def get_env_or_default(env_var, default, var_type: type = str):
  """Get environment variable with type conversion and default fallback."""
  value = os.getenv(env_var)
  if value is None:
    return default

  if var_type is bool:
    return value.lower() in ("true", "1", "yes", "on")
  elif var_type is int:
    try:
      return int(value)
    except ValueError:
      return default
  else:
    return value


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="stratchat-relay")
  parser.add_argument(
    "--port",
    "-p",
    type=int,
    default=get_env_or_default("STRATCHAT_PORT", None, int),
    help="Websocket port to listen on. Overrides the config file. (Env: STRATCHAT_PORT)",
  )
  parser.add_argument(
    "--http_port",
    type=int,
    default=get_env_or_default("STRATCHAT_HTTP_PORT", None, int),
    help="Port for the analysis HTTP API. (Env: STRATCHAT_HTTP_PORT)",
  )
  parser.add_argument(
    "--no_http",
    action="store_true",
    help="Do not serve the analysis HTTP API.",
  )
  parser.add_argument(
    "--config",
    type=str,
    default=get_env_or_default("STRATCHAT_CONFIG", None),
    help="Path to a YAML configuration file. (Env: STRATCHAT_CONFIG)",
  )
  parser.add_argument(
    "--conversational",
    action="store_true",
    default=get_env_or_default("STRATCHAT_CONVERSATIONAL", False, bool),
    help="Forward spoken model replies to clients by default. (Env: STRATCHAT_CONVERSATIONAL)",
  )
  parser.add_argument(
    "--json_logs",
    action="store_true",
    default=get_env_or_default("JSON_LOGS", False, bool),
    help="Output logs in JSON format. (Env: JSON_LOGS)",
  )
  parser.add_argument(
    "--correlation_id",
    type=str,
    default=get_env_or_default("CORRELATION_ID", None),
    help="Correlation ID for log tracing. (Env: CORRELATION_ID)",
  )
  return parser


async def main(argv: list[str] | None = None) -> None:
  load_dotenv()
  parser = build_parser()
  args = parser.parse_args(argv)

  log_level = os.getenv("LOG_LEVEL", "INFO").upper()
  setup_logging(level=log_level, json_output=args.json_logs, correlation_id=args.correlation_id)
  logger = get_logger("main")

  from stratchat.relay.config import RelayConfig, get_api_key, load_config_from_file
  from stratchat.relay.server import build_server

  config = load_config_from_file(args.config) if args.config else RelayConfig()
  overrides: dict = {}
  if args.port is not None:
    overrides["port"] = args.port
  if args.http_port is not None:
    overrides["http_port"] = args.http_port
  if args.no_http:
    overrides["http_port"] = None
  config = config.model_copy(update=overrides)
  if args.conversational:
    config.upstream = config.upstream.model_copy(update={"conversational": True})
  config.pretty_print()

  try:
    api_key = get_api_key()
  except ValueError as e:
    parser.error(str(e))

  logger.info("Starting stratchat relay", port=config.port, http_port=config.http_port)
  relay, api_server = build_server(config, api_key)
  await relay.run(api_server)


def run() -> None:
  try:
    asyncio.run(main())
  except KeyboardInterrupt:
    pass


if __name__ == "__main__":
  run()
