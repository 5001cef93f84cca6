"""
SDK for the generation gateway.

Provides the OpenAI-backed text generator.
"""

from .openai_client import OpenAIGenerator

__all__ = ["OpenAIGenerator"]
