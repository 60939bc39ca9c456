"""stratchat: a live conversation copilot built on a realtime speech model."""

__version__ = "0.1.0"
