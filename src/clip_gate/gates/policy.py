"""Gate 4: content policy.

Two stages:
- Stage A (:func:`sanitize_prompt`) runs on the text prompt before any
  generation. Blocked terms reject the prompt outright; soft euphemisms are
  rewritten.
- Stage B (:class:`ContentPolicyGate`) reviews sampled frames of the
  generated clip with a vision model. High/critical severity is a hard fail.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from clip_gate.errors import ConfigurationError, InferenceError, PromptBlockedError
from clip_gate.gates.base import Gate, GateContext
from clip_gate.gates.transitions import FailureKind, corrective_action_for
from clip_gate.gates.verdict import Classification, GateVerdict
from clip_gate.inference.base import FreeformText, parse_response
from clip_gate.inference.prompts import GatePromptBuilder
from clip_gate.logging import get_logger
from clip_gate.media.snapshots import Clip
from clip_gate.thresholds import BLOCKED_TERMS, REWRITE_MAP

logger = get_logger(__name__)

# Plural and past/progressive endings accepted after a term
_INFLECTIONS = r"(?:s|es|ed|d|ing|ren)?"


def _term_pattern(term: str) -> str:
    return rf"\b{re.escape(term)}{_INFLECTIONS}\b"


@dataclass(frozen=True)
class SanitizeResult:
    """Outcome of Stage A prompt screening.

    Attributes:
        passed: False when any blocked term was found
        sanitized_text: Rewritten prompt, or None when blocked
        rewrites: (original text as written, replacement) in prompt order
        blocked_terms: Blocked terms found in the prompt
    """

    passed: bool
    sanitized_text: str | None
    rewrites: list[tuple[str, str]] = field(default_factory=list)
    blocked_terms: frozenset[str] = frozenset()

    def raise_if_blocked(self) -> None:
        """Raise PromptBlockedError for a blocked prompt."""
        if not self.passed:
            raise PromptBlockedError(
                f"Prompt contains blocked terms: {', '.join(sorted(self.blocked_terms))}",
                self.blocked_terms,
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "passed": self.passed,
            "sanitized_text": self.sanitized_text,
            "rewrites": [{"original": o, "replacement": r} for o, r in self.rewrites],
            "blocked_terms": sorted(self.blocked_terms),
        }


def find_blocked_terms(prompt: str, blocked_terms: tuple[str, ...] = BLOCKED_TERMS) -> frozenset[str]:
    """Return every blocked term that appears in the prompt as a whole word."""
    return frozenset(
        term for term in blocked_terms
        if re.search(_term_pattern(term), prompt, re.IGNORECASE)
    )


def sanitize_prompt(
    prompt: str,
    blocked_terms: tuple[str, ...] = BLOCKED_TERMS,
    rewrite_map: dict[str, str] = REWRITE_MAP,
) -> SanitizeResult:
    """Stage A: screen and rewrite a generation prompt.

    Matching is case-insensitive on word boundaries and accepts simple
    inflections ("arrest" matches "arrested"). Rewrites run as a single
    longest-first pass, so replacement text is never matched again.

    Args:
        prompt: Text prompt about to be sent for generation
        blocked_terms: Terms that reject the prompt
        rewrite_map: Euphemism rewrites

    Returns:
        SanitizeResult; ``passed`` is False when any blocked term matched
    """
    blocked = find_blocked_terms(prompt, blocked_terms)
    if blocked:
        logger.warning(
            "Prompt blocked before generation",
            extra={"event": "prompt_blocked", "stage": "A", "blocked_terms": sorted(blocked)},
        )
        return SanitizeResult(passed=False, sanitized_text=None, blocked_terms=blocked)

    if not rewrite_map:
        return SanitizeResult(passed=True, sanitized_text=prompt)

    keys = sorted(rewrite_map, key=len, reverse=True)
    pattern = re.compile(
        r"\b(" + "|".join(re.escape(k) for k in keys) + r")" + _INFLECTIONS + r"\b",
        re.IGNORECASE,
    )
    lookup = {k.lower(): v for k, v in rewrite_map.items()}
    rewrites: list[tuple[str, str]] = []

    def substitute(match: re.Match) -> str:
        replacement = lookup[match.group(1).lower()]
        rewrites.append((match.group(0), replacement))
        return replacement

    sanitized = pattern.sub(substitute, prompt)
    for original, replacement in rewrites:
        logger.info(
            f"Prompt rewrite: {original!r} -> {replacement!r}",
            extra={"event": "prompt_rewrite", "stage": "A"},
        )
    return SanitizeResult(passed=True, sanitized_text=sanitized, rewrites=rewrites)


class Severity(str, Enum):
    """Stage B content severity, in increasing order."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    @property
    def is_blocking(self) -> bool:
        """High and critical content is never publishable."""
        return self.rank >= Severity.HIGH.rank


@dataclass(frozen=True)
class ContentReview:
    """Parsed Stage B classification."""

    severity: Severity
    flags: tuple[str, ...]
    summary: str = ""
    path: str = "structured"


# Freeform fallback: keyword -> flag
_FLAG_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("faces_present", ("face", "person identified")),
    ("violence", ("violen", "blood", "weapon")),
    ("law_enforcement_resemblance", ("law enforcement", "police", "badge")),
    ("weapons", ("weapon", "gun", "knife")),
    ("panic_inducing", ("panic", "distress", "fear")),
    ("branded_logos", ("logo", "brand", "trademark")),
]

_HIGH_FLAGS = {"violence", "weapons", "law_enforcement_resemblance"}
_MEDIUM_FLAGS = {"panic_inducing", "branded_logos"}


def _severity_from_text(lower: str) -> Severity:
    for severity in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW):
        if f"severity: {severity.value}" in lower or f'"{severity.value}"' in lower:
            return severity
    return Severity.NONE


def parse_freeform_review(text: str) -> ContentReview:
    """Keyword heuristic for a review that did not parse as JSON.

    Flags found without an explicit severity escalate it: violence, weapons
    or law-enforcement resemblance to high, panic or logos to medium,
    anything else to low.
    """
    lower = text.lower()
    flags = tuple(
        flag for flag, keywords in _FLAG_KEYWORDS
        if any(keyword in lower for keyword in keywords)
    )
    severity = _severity_from_text(lower)
    if severity == Severity.NONE and flags:
        if _HIGH_FLAGS.intersection(flags):
            severity = Severity.HIGH
        elif _MEDIUM_FLAGS.intersection(flags):
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
    return ContentReview(severity=severity, flags=flags, path="freeform")


def parse_content_review(text: str) -> ContentReview:
    """Parse a Stage B response, structured first.

    A structured answer of severity "none" that still lists flags counts as
    low, so flagged content never passes silently.
    """
    parsed = parse_response(text, required_key="severity")
    if isinstance(parsed, FreeformText):
        return parse_freeform_review(text)

    try:
        severity = Severity(str(parsed.data["severity"]).strip().lower())
    except ValueError:
        return parse_freeform_review(text)

    raw_flags = parsed.data.get("flags") or []
    flags = tuple(f for f in raw_flags if isinstance(f, str)) if isinstance(raw_flags, list) else ()
    if severity == Severity.NONE and flags:
        severity = Severity.LOW
    return ContentReview(
        severity=severity,
        flags=flags,
        summary=str(parsed.data.get("summary") or ""),
        path="structured",
    )


class ContentPolicyGate(Gate):
    """Stage B content review of sampled frames.

    A failed classification call is never treated as a pass: it becomes a
    medium-severity soft fail flagged ``review_api_error``.
    """

    index = 4
    name = "content_policy"
    classification = Classification.HARD

    async def evaluate(self, clip: Clip, context: GateContext) -> GateVerdict:
        if context.inference is None:
            raise ConfigurationError("Content review requires an inference provider")

        frames = await context.frames.keyframes(clip, context.keyframe_count)
        instruction = GatePromptBuilder(context.fmt).build_content_review_prompt(context.concept, len(frames))

        try:
            response = await context.inference.classify_frames(frames, instruction)
        except InferenceError as e:
            context.logger.error(
                "Content review call failed; holding clip for manual review",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return self.make_fail(
                "Content review API call failed; manual review required",
                {"severity": Severity.MEDIUM.value, "frames_reviewed": len(frames), "error": str(e)},
                flags=("review_api_error",),
                classification=Classification.SOFT,
            )

        review = parse_content_review(response.text)
        context.logger.info(
            f"Content review parsed via {review.path} path",
            extra={"gate": self.index, "parse_path": review.path},
        )
        measurements = {
            "severity": review.severity.value,
            "frames_reviewed": len(frames),
            "parse_path": review.path,
        }
        if review.summary:
            measurements["summary"] = review.summary

        flag_list = ", ".join(review.flags) or "none"
        if review.severity.is_blocking:
            context.logger.error(
                "Content review hard fail",
                extra={
                    "event": "gate_hard_fail",
                    "stage": "B",
                    "severity": review.severity.value,
                    "flags": list(review.flags),
                },
            )
            return self.make_fail(
                f"Content review found {review.severity.value} severity content: {flag_list}",
                measurements,
                flags=review.flags,
            )

        if review.severity != Severity.NONE:
            return self.make_fail(
                f"Content review found {review.severity.value} severity flags: {flag_list}",
                measurements,
                action=corrective_action_for(self.index, context.fmt, FailureKind.CONTENT_FLAGGED),
                flags=review.flags,
                classification=Classification.SOFT,
            )

        return self.make_pass(measurements)
