"""Transcript models, context windowing and result injection."""

from .context_window import build_context
from .message_model import ContextMessage, TranscriptEntry

__all__ = ["ContextMessage", "TranscriptEntry", "build_context"]
