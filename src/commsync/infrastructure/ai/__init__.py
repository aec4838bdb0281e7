"""AI text generation."""

from commsync.infrastructure.ai.generator import ChatCompletionsGenerator, get_ai_generator

__all__ = ["ChatCompletionsGenerator", "get_ai_generator"]
