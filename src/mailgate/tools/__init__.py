"""Tool surface: built-in tools plus one dynamic tool per catalog endpoint."""

from __future__ import annotations

from mailgate.tools.dispatcher import ToolDispatcher

__all__ = ["ToolDispatcher"]
