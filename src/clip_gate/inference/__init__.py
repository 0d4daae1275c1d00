"""Vision inference clients for the frame-reviewing gates.

Provides an async provider interface with Claude and OpenAI implementations
and the structured/freeform response parsing the gates share.
"""

from clip_gate.inference.base import (
    FreeformText,
    InferenceConfig,
    InferenceProvider,
    InferenceProviderType,
    InferenceResponse,
    ParsedResponse,
    StructuredResult,
    coerce_bool,
    get_inference_provider,
    parse_json_lines,
    parse_response,
)
from clip_gate.inference.prompts import GatePromptBuilder

__all__ = [
    "FreeformText",
    "InferenceConfig",
    "InferenceProvider",
    "InferenceProviderType",
    "InferenceResponse",
    "ParsedResponse",
    "StructuredResult",
    "coerce_bool",
    "get_inference_provider",
    "parse_json_lines",
    "parse_response",
    "GatePromptBuilder",
]
