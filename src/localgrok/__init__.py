"""localgrok: chat with a local Ollama model that can search the web."""

__version__ = "0.3.0"
