"""mailgate: tool gateway and natural-language planner for the Zapmail API."""

__version__ = "0.1.0"
