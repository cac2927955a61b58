"""Inline tool system for localgrok."""

from localgrok.tools.base import Tool
from localgrok.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry"]
