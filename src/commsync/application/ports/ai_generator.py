from __future__ import annotations
from typing import Protocol


class AiGenerator(Protocol):
    async def generate(self, kind: str, prompt: str) -> str: ...
