"""AI text generation against an OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

import httpx
from loguru import logger

from commsync.domain.errors import ProviderConnectionError

SYSTEM_PROMPTS: dict[str, str] = {
    "generate_message": "Write a concise, friendly reply to the conversation below.",
    "summarize_thread": "Summarize the conversation below in a few short bullet points.",
    "draft_email": "Draft a complete, professional email based on the notes below.",
    "translate_message": "Translate the message below. Reply with the translation only.",
    "analyze_sentiment": "Classify the sentiment of the message below as positive, neutral or negative, with one sentence of explanation.",
}


class ChatCompletionsGenerator:
    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def generate(self, kind: str, prompt: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPTS.get(kind, SYSTEM_PROMPTS["generate_message"])},
                {"role": "user", "content": prompt},
            ],
        }

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise ProviderConnectionError("AI generation timed out") from e
        except httpx.HTTPError as e:
            raise ProviderConnectionError(f"AI generation failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"LLM API error {response.status_code}: {response.text[:200]}")
            raise ProviderConnectionError(f"AI generation HTTP {response.status_code}")

        choices = response.json().get("choices") or []
        text = (choices[0].get("message") or {}).get("content", "") if choices else ""
        logger.info(f"AI {kind} generated {len(text)} chars")
        return text.strip()


# Singleton instance
_generator: ChatCompletionsGenerator | None = None


def get_ai_generator() -> ChatCompletionsGenerator:
    """Get or create AI generator singleton."""
    global _generator
    if _generator is None:
        from commsync.infrastructure.settings import get_settings

        settings = get_settings()
        _generator = ChatCompletionsGenerator(
            base_url=settings.llm_base_url,
            model=settings.llm_model_name,
            api_key=settings.llm_api_key.get_secret_value() if settings.llm_api_key else None,
        )
    return _generator
