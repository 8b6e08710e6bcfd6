"""
OpenRouter prompt expansion.

Turns a short background idea ("sunny beach") into a detailed scene
description for the image model. Optional: any failure falls back to
the user's prompt.
"""

from typing import Optional

import httpx

from photofusion.core.config import Settings
from photofusion.core.logging import get_logger
from photofusion.core.metrics import record_upstream_call

logger = get_logger(__name__)

SERVICE = "openrouter"

SYSTEM_PROMPT = (
    "You write prompts for a text-to-image model. Rewrite the user's idea as one "
    "detailed description of a background scene: setting, lighting, time of day, "
    "colour palette and camera perspective. The scene must be empty, with no people, "
    "animals or foreground subject, because a cut-out subject is placed on top later. "
    "Answer with the prompt only, in English, under 80 words."
)


class PromptExpander:

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "openai/gpt-4o-mini"
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, config: Settings) -> "PromptExpander":
        return cls(
            client,
            api_key=config.OPENROUTER_API_KEY,
            base_url=config.OPENROUTER_API_BASE,
            model=config.OPENROUTER_MODEL
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def expand(self, prompt: str) -> str:
        if not self.enabled:
            return prompt

        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": 0.7,
                },
            )
        except httpx.HTTPError as e:
            record_upstream_call(SERVICE, "network")
            logger.warning("prompt_expansion_failed", error=str(e))
            return prompt

        record_upstream_call(SERVICE, response.status_code)
        if not response.is_success:
            logger.warning(
                "prompt_expansion_failed",
                http_status=response.status_code,
                body=response.text[:300]
            )
            return prompt

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("prompt_expansion_unexpected_payload", body=response.text[:300])
            return prompt

        if not isinstance(content, str):
            logger.warning("prompt_expansion_unexpected_payload", body=response.text[:300])
            return prompt

        expanded = content.strip().strip('"').strip()
        if not expanded:
            return prompt

        logger.info("prompt_expanded", original_length=len(prompt), expanded_length=len(expanded))
        return expanded
