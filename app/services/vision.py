"""Vision analyzer — wraps LiteLLM to turn a product image into field + label suggestions.

``analyze`` never raises for provider failures: it returns either an
``AnalysisResult`` or an ``AnalyzerError`` whose ``kind`` tells the worker
whether the failure is worth retrying.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    ContentPolicyViolationError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
    UnprocessableEntityError,
)

from app.core.config import Settings

logger = logging.getLogger(__name__)

VISION_PROMPT = """Analyze this product image for an e-commerce store.
Return a JSON object with TWO distinct sections:

{
  "fields": {
    "target_gender": "Female" | "Male" | "Unisex",
    "age_group": "Adult" | "Teen" | "Kids" | "Baby",
    "color": "Primary color (e.g., Navy Blue)",
    "pattern": "Solid" | "Striped" | "Floral" | "Plaid" | "Paisley" | "Animal Print" | "Geometric" | "Abstract",
    "material": "Cotton" | "Polyester" | "Silk" | "Wool" | "Denim" | "Leather" | "Linen" | "Synthetic",
    "neckline": "Crew" | "V-neck" | "Scoop" | "Boat" | "Turtleneck" | "Off-shoulder" | "Halter" | "Collared" | null,
    "sleeve_length": "Sleeveless" | "Short" | "3/4" | "Long" | null,
    "fit": "Slim" | "Regular" | "Relaxed" | "Oversized"
  },
  "labels": ["Title Case keywords: color, pattern, material, plus 3-5 vibe/occasion words"]
}

Rules:
1. Only include field keys where you can make a confident visual assessment.
2. For non-apparel products omit neckline, sleeve_length and fit.
3. Return valid JSON only - no markdown, no explanation."""

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_SIZED = re.compile(r"_\d+x\d+\.")


class AnalyzerErrorKind(StrEnum):
    # Retried by the queue
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    UNAVAILABLE = "UNAVAILABLE"
    # Terminal
    FLAGGED_CONTENT = "FLAGGED_CONTENT"
    INVALID_IMAGE = "INVALID_IMAGE"
    PARSE_ERROR = "PARSE_ERROR"
    API_ERROR = "API_ERROR"


TRANSIENT_KINDS = frozenset({
    AnalyzerErrorKind.TIMEOUT,
    AnalyzerErrorKind.RATE_LIMITED,
    AnalyzerErrorKind.UNAVAILABLE,
})


@dataclass
class AnalysisResult:
    fields: dict[str, str] = field(default_factory=dict)
    labels: list[str] = field(default_factory=list)


@dataclass
class AnalyzerError:
    kind: AnalyzerErrorKind
    message: str

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class Analyzer(Protocol):
    async def analyze(self, image_ref: str) -> AnalysisResult | AnalyzerError: ...


def strip_code_fences(text: str) -> str:
    """Models sometimes wrap JSON in ```json ... ``` despite instructions."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
    cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)
    return cleaned.strip()


def resize_image_url(image_url: str, size: int) -> str:
    """Ask the CDN for a ``{size}x{size}`` rendition to save tokens and bandwidth."""
    base, sep, query = image_url.partition("?")
    if _SIZED.search(base):
        return image_url
    dot = base.rfind(".")
    if dot == -1 or dot < base.rfind("/"):
        return image_url
    resized = f"{base[:dot]}_{size}x{size}{base[dot:]}"
    return f"{resized}{sep}{query}"


def parse_analysis(text: str) -> AnalysisResult | AnalyzerError:
    """Parse the model's reply into suggestions; shape problems are terminal."""
    try:
        data: Any = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        return AnalyzerError(AnalyzerErrorKind.PARSE_ERROR, f"Failed to parse JSON: {exc}")

    if not isinstance(data, dict):
        return AnalyzerError(AnalyzerErrorKind.PARSE_ERROR, "Invalid response structure")
    fields = data.get("fields", data.get("metafields"))
    labels = data.get("labels", data.get("tags"))
    if not isinstance(fields, dict) or not isinstance(labels, list):
        return AnalyzerError(AnalyzerErrorKind.PARSE_ERROR, "Invalid response structure")

    return AnalysisResult(
        fields={str(k): str(v) for k, v in fields.items() if v is not None and v != ""},
        labels=[str(label) for label in labels if str(label).strip()],
    )


def classify_exception(exc: Exception) -> AnalyzerErrorKind:
    """Map a LiteLLM exception onto the analyzer error taxonomy."""
    if isinstance(exc, ContentPolicyViolationError):
        return AnalyzerErrorKind.FLAGGED_CONTENT
    if isinstance(exc, Timeout):
        return AnalyzerErrorKind.TIMEOUT
    if isinstance(exc, RateLimitError):
        return AnalyzerErrorKind.RATE_LIMITED
    if isinstance(exc, (ServiceUnavailableError, InternalServerError, APIConnectionError)):
        return AnalyzerErrorKind.UNAVAILABLE
    if isinstance(exc, BadRequestError):
        return AnalyzerErrorKind.INVALID_IMAGE
    if isinstance(exc, (AuthenticationError, PermissionDeniedError, NotFoundError,
                        UnprocessableEntityError)):
        return AnalyzerErrorKind.API_ERROR
    # Unknown failures are most often transport trouble
    return AnalyzerErrorKind.UNAVAILABLE


class VisionAnalyzer:
    """Analyzer backed by a LiteLLM vision-capable chat model."""

    def __init__(
        self,
        model: str,
        *,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        image_size: int = 800,
        api_key: str | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.image_size = image_size
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings) -> VisionAnalyzer:
        return cls(
            settings.vision_model,
            max_tokens=settings.vision_max_tokens,
            timeout=settings.vision_timeout_seconds,
            image_size=settings.vision_image_size,
        )

    async def analyze(self, image_ref: str) -> AnalysisResult | AnalyzerError:
        kwargs: dict = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": resize_image_url(image_ref, self.image_size)},
                        },
                        {"type": "text", "text": VISION_PROMPT},
                    ],
                },
            ],
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = await acompletion(**kwargs)
        except Exception as exc:
            kind = classify_exception(exc)
            logger.warning("Vision call failed for %s: %s (%s)", image_ref, kind, exc)
            return AnalyzerError(kind, str(exc)[:500] or kind.value)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            return AnalyzerError(AnalyzerErrorKind.PARSE_ERROR, "No text response from model")
        return parse_analysis(content)
