"""Command line client: listen to a conversation through the relay and show the transcript."""

import asyncio
import signal
import sys
from pathlib import Path

import sounddevice as sd
from clypi import Command, arg
from rich.console import Console

from stratchat.client.config import (
  DEFAULT_REFINE_URL,
  DEFAULT_RELAY_URL,
  DEFAULT_SYSTEM_INSTRUCTION,
  ClientSettings,
)
from stratchat.client.controller import ConnectionStatus, LiveSessionController
from stratchat.client.devices import list_input_devices
from stratchat.client.refinement import HttpRefiner
from stratchat.client.transcript import Speaker, TranscriptEntry
from stratchat.common import get_logger, setup_logging_from_env


def parse_relay_url(value: str | list[str]) -> str:
  """Accept ``host:port`` shorthand or a full ws:// URL."""
  if not isinstance(value, str) or not value.strip():
    raise ValueError("Relay URL cannot be empty")
  value = value.strip()
  if value.startswith(("ws://", "wss://")):
    return value
  if "://" in value:
    raise ValueError(f"Unsupported relay URL scheme: {value}")
  return f"ws://{value}/ws"


def parse_device(value: str) -> int | str | None:
  """Device index, device name, or None for an empty value."""
  value = value.strip()
  if not value:
    return None
  return int(value) if value.isdigit() else value


class TranscriptPrinter:
  """Prints finalized, refined and assistant entries as they land."""

  def __init__(self, console: Console):
    self.console = console

  def on_entry(self, entry: TranscriptEntry) -> None:
    if entry.speaker == Speaker.ASSISTANT:
      self.console.print(f"[bold magenta]suggestion[/] {entry.text}")
    elif entry.is_refined:
      self.console.print(f"[green]refined[/]    {entry.text}")
    elif entry.is_final:
      self.console.print(f"[cyan]you[/]        {entry.text}")

  def on_status(self, status: ConnectionStatus) -> None:
    style = "red" if status == ConnectionStatus.ERROR else "dim"
    self.console.print(f"[{style}]status: {status}[/]")

  def on_error(self, error: Exception) -> None:
    self.console.print(f"[bold red]error:[/] {error}")


class Devices(Command):
  """List audio input devices usable with --mic-device and --display-device."""

  async def run(self) -> None:
    default_input = sd.default.device[0] if isinstance(sd.default.device, tuple) else None
    devices = list_input_devices()
    if not devices:
      print("No input devices found.")
      return
    for device in devices:
      marker = " [DEFAULT INPUT]" if device["index"] == default_input else ""
      print(f"Device: {device['name']}{marker}")
      print(f"  ID: {device['index']}")
      print(f"  Input channels: {device['max_input_channels']}")
      print(f"  Default sample rate: {device['default_samplerate']:.0f}")
      print()


class StratChat(Command):
  """stratchat - live transcript and strategy suggestions for a conversation.

  Streams the microphone (and optionally system audio) through a stratchat relay, prints the
  primary speaker's turns as they finalize, replaces them with refined text when available,
  and shows the assistant's suggestions.
  """

  subcommand: Devices | None

  relay: str = arg(default=DEFAULT_RELAY_URL, parser=parse_relay_url)
  instruction: str = arg(default=DEFAULT_SYSTEM_INSTRUCTION)
  mic_device: str = arg(default="")
  display_device: str = arg(default="")
  conversational: bool = arg(default=False)
  refine_url: str = arg(default=DEFAULT_REFINE_URL)
  no_refine: bool = arg(default=False)
  save: str = arg(default="")

  def __init__(self, **kwargs):
    super().__init__(**kwargs)
    self.logger = get_logger("cli")
    self._shutdown = asyncio.Event()

  def settings(self) -> ClientSettings:
    return ClientSettings(
      relay_url=self.relay,
      system_instruction=self.instruction,
      microphone_device=parse_device(self.mic_device),
      display_device=parse_device(self.display_device),
      conversational=self.conversational,
      refine_url=None if self.no_refine else self.refine_url,
    )

  async def run(self) -> None:
    settings = self.settings()
    printer = TranscriptPrinter(Console())
    controller = LiveSessionController(
      settings,
      refiner=HttpRefiner(settings.refine_url) if settings.refine_url else None,
      on_status=printer.on_status,
      on_entry=printer.on_entry,
      on_error=printer.on_error,
    )

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
      loop.add_signal_handler(signum, self._shutdown.set)

    self.logger.info("Starting session", relay=settings.relay_url)
    controller.start()
    closed = asyncio.create_task(controller.wait_closed())
    shutdown = asyncio.create_task(self._shutdown.wait())
    await asyncio.wait({closed, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    shutdown.cancel()
    await controller.stop()

    if self.save:
      Path(self.save).write_text(controller.log.export_text() + "\n", encoding="utf-8")
      self.logger.info("Transcript saved", path=self.save, entries=len(controller.log))

    if controller.last_error is not None:
      sys.exit(1)


def main() -> None:
  """Main entry point for the stratchat command."""
  setup_logging_from_env()
  logger = get_logger("main")
  try:
    cli = StratChat.parse()
    cli.start()
  except KeyboardInterrupt:
    logger.info("Interrupted, shutting down")
    sys.exit(0)


if __name__ == "__main__":
  main()
