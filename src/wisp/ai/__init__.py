"""OpenAI-compatible completion backend."""

from .client import ClientSettings, CompletionBackend

__all__ = ["ClientSettings", "CompletionBackend"]
