"""Base classes and types for vision inference.

Defines the abstract provider interface used by gates 2 and 4-7, and the
two-path response parsing every caller relies on: a strict JSON parse
first, then a caller-supplied keyword heuristic over the raw text.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from clip_gate.errors import InferenceTimeoutError, RetryConfig, retry_with_backoff
from clip_gate.logging import get_logger
from clip_gate.media.toolkit import FrameImage

logger = get_logger(__name__)


class InferenceProviderType(str, Enum):
    """Supported vision inference providers."""

    CLAUDE = "claude"
    OPENAI = "openai"


@dataclass
class InferenceConfig:
    """Configuration for an inference provider.

    Attributes:
        provider: Which provider to use
        api_key: API key for the provider (or use env variable)
        model: Model name/ID to use
        max_tokens: Maximum tokens in response
        temperature: Sampling temperature (0-1)
        timeout: Seconds before a call is abandoned
        max_attempts: Attempts per call for rate limits and transient errors
    """

    provider: InferenceProviderType = InferenceProviderType.CLAUDE
    api_key: str | None = None
    model: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.0
    timeout: float = 60.0
    max_attempts: int = 3

    def __post_init__(self):
        """Set default models based on provider."""
        self.provider = InferenceProviderType(self.provider)
        if self.model is None:
            if self.provider == InferenceProviderType.CLAUDE:
                self.model = "claude-sonnet-4-5-20250929"
            elif self.provider == InferenceProviderType.OPENAI:
                self.model = "gpt-4.1"


@dataclass
class InferenceResponse:
    """Raw text returned by one classification call."""

    text: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class StructuredResult:
    """A response that parsed as the JSON object the caller asked for."""

    data: dict[str, Any]
    raw: str = ""

    path = "structured"


@dataclass(frozen=True)
class FreeformText:
    """A response that did not parse; callers run their keyword heuristic."""

    text: str
    errors: list[str] = field(default_factory=list)

    path = "freeform"


ParsedResponse = Union[StructuredResult, FreeformText]

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _candidate_blocks(text: str) -> list[str]:
    """JSON candidates: fenced blocks first, then the outermost braces."""
    candidates = [m.strip() for m in _FENCED_JSON.findall(text)]
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    return candidates


def parse_response(text: str, required_key: str | None = None) -> ParsedResponse:
    """Parse an inference response.

    Args:
        text: Raw response text
        required_key: Key the JSON object must contain to count as structured

    Returns:
        StructuredResult when a JSON object with ``required_key`` is found,
        otherwise FreeformText
    """
    errors = []
    for block in _candidate_blocks(text):
        try:
            data = json.loads(block)
        except json.JSONDecodeError as e:
            errors.append(str(e))
            continue
        if not isinstance(data, dict):
            errors.append("not a JSON object")
            continue
        if required_key is not None and required_key not in data:
            errors.append(f"missing key: {required_key}")
            continue
        return StructuredResult(data=data, raw=text)

    if not errors:
        errors.append("no JSON found")
    return FreeformText(text=text, errors=errors)


def parse_json_lines(text: str) -> list[dict[str, Any]]:
    """Parse one-JSON-object-per-line output, skipping malformed lines."""
    records = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            records.append(data)
    return records


def coerce_bool(value: Any) -> bool:
    """Read a JSON answer field as a boolean, accepting "true"/"yes" strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


class InferenceProvider(ABC):
    """Abstract base class for vision inference providers.

    Subclasses implement :meth:`_classify_once`; :meth:`classify_frames`
    adds the timeout and rate-limit retries.
    """

    def __init__(self, config: InferenceConfig):
        """Initialize the provider.

        Args:
            config: Inference configuration
        """
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable provider name."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider can be used (API key present)."""

    @abstractmethod
    async def _classify_once(self, frames: list[FrameImage], instruction: str) -> InferenceResponse:
        """Send one request with the frames and instruction."""

    async def classify_frames(self, frames: list[FrameImage], instruction: str) -> InferenceResponse:
        """Classify frames against an instruction.

        Args:
            frames: Images to send
            instruction: Task text, usually asking for a JSON answer

        Returns:
            InferenceResponse with the raw text

        Raises:
            InferenceTimeoutError: If the whole call exceeds the configured timeout
            InferenceError: If the service fails after retries
        """
        call = retry_with_backoff(RetryConfig(max_attempts=self.config.max_attempts))(
            self._classify_once
        )
        try:
            response = await asyncio.wait_for(call(frames, instruction), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(
                f"{self.provider_name} did not respond within {self.config.timeout}s",
                timeout=self.config.timeout,
            ) from e

        logger.debug(
            "Inference response received",
            extra={
                "provider": self.provider_name,
                "frames": len(frames),
                "response_length": len(response.text),
                "tokens": response.input_tokens + response.output_tokens,
            },
        )
        return response


def get_inference_provider(config: InferenceConfig | None = None) -> InferenceProvider:
    """Factory function to get the configured inference provider.

    Args:
        config: Inference configuration

    Returns:
        InferenceProvider instance based on config
    """
    if config is None:
        config = InferenceConfig()

    if config.provider == InferenceProviderType.CLAUDE:
        from clip_gate.inference.claude import ClaudeVision
        return ClaudeVision(config)
    elif config.provider == InferenceProviderType.OPENAI:
        from clip_gate.inference.openai import OpenAIVision
        return OpenAIVision(config)
    else:
        raise ValueError(f"Unsupported inference provider: {config.provider}")
