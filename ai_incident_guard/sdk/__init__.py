"""
SDK for AI Incident Guard.

Wraps LLM clients so every call is constrained and logged.
"""

from .openai_client import GuardedOpenAI

__all__ = ["GuardedOpenAI"]
