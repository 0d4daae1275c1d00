"""Claude (Anthropic) vision provider.

Sends sampled frames as base64 image blocks followed by the gate's
instruction text. Requires ANTHROPIC_API_KEY or ``api_key`` in config.
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


class ClaudeVision(InferenceProvider):
    """Claude vision provider using the async Anthropic client."""

    def __init__(self, config: InferenceConfig | None = None):
        if config is None:
            config = InferenceConfig(provider=InferenceProviderType.CLAUDE)
        super().__init__(config)
        self._client = None

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        return "Claude (Anthropic)"

    def _get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        return self.config.api_key or os.environ.get("ANTHROPIC_API_KEY")

    def is_available(self) -> bool:
        """Check if Claude API is available.

        Returns:
            True if API key is set
        """
        return self._get_api_key() is not None

    def _get_client(self):
        """Get or create the Anthropic client."""
        if self._client is None:
            from anthropic import AsyncAnthropic

            api_key = self._get_api_key()
            if not api_key:
                raise ConfigurationError(
                    "ANTHROPIC_API_KEY not set. Set environment variable or "
                    "provide api_key in the inference config."
                )

            # The SDK retries on its own; retries are handled by classify_frames
            self._client = AsyncAnthropic(
                api_key=api_key,
                timeout=self.config.timeout,
                max_retries=0,
            )

        return self._client

    def _build_content(self, frames: list[FrameImage], instruction: str) -> list[dict]:
        content: list[dict] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": frame.media_type,
                    "data": frame.read_base64(),
                },
            }
            for frame in frames
        ]
        content.append({"type": "text", "text": instruction})
        return content

    async def _classify_once(self, frames: list[FrameImage], instruction: str) -> InferenceResponse:
        client = self._get_client()

        try:
            response = await client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                messages=[
                    {"role": "user", "content": self._build_content(frames, instruction)},
                ],
            )
        except Exception as e:
            raise wrap_external_error(e, "anthropic", "classify_frames") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return InferenceResponse(
            text=text,
            model=self.config.model or "",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
