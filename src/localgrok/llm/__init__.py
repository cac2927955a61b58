"""Ollama client and inline tool-call parsing for localgrok."""

from localgrok.llm.client import AsyncOllamaClient, OllamaError
from localgrok.llm.response_parser import (
    clean_tool_artifacts,
    detect_tool_call,
    extract_tool_call_json,
    is_starting_with_tool_call,
)

__all__ = [
    "AsyncOllamaClient",
    "OllamaError",
    "clean_tool_artifacts",
    "detect_tool_call",
    "extract_tool_call_json",
    "is_starting_with_tool_call",
]
