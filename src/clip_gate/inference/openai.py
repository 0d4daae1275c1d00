"""OpenAI vision provider.

Sends sampled frames as data-URL image parts alongside the gate's
instruction text. Requires OPENAI_API_KEY or ``api_key`` in config.
"""

from __future__ import annotations

import os

from clip_gate.errors import ConfigurationError, wrap_external_error
from clip_gate.inference.base import (
    InferenceConfig,
    InferenceProvider,
    InferenceProviderType,
    InferenceResponse,
)
from clip_gate.media.toolkit import FrameImage


class OpenAIVision(InferenceProvider):
    """OpenAI vision provider using the async OpenAI client."""

    def __init__(self, config: InferenceConfig | None = None):
        if config is None:
            config = InferenceConfig(provider=InferenceProviderType.OPENAI)
        super().__init__(config)
        self._client = None

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        return "OpenAI"

    def _get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        return self.config.api_key or os.environ.get("OPENAI_API_KEY")

    def is_available(self) -> bool:
        """Check if OpenAI API is available."""
        return self._get_api_key() is not None

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            api_key = self._get_api_key()
            if not api_key:
                raise ConfigurationError(
                    "OPENAI_API_KEY not set. Set environment variable or "
                    "provide api_key in the inference config."
                )

            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=self.config.timeout,
                max_retries=0,
            )

        return self._client

    async def _classify_once(self, frames: list[FrameImage], instruction: str) -> InferenceResponse:
        client = self._get_client()

        content: list[dict] = [{"type": "text", "text": instruction}]
        for frame in frames:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{frame.media_type};base64,{frame.read_base64()}"},
            })

        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            raise wrap_external_error(e, "openai", "classify_frames") from e

        usage = response.usage
        return InferenceResponse(
            text=response.choices[0].message.content or "",
            model=self.config.model or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
