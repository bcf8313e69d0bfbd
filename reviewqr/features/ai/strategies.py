"""
reviewqr/features/ai/strategies.py

Enhancement strategies.

- GroqEnhancementStrategy: remote chat completion with a bounded timeout, no retries
- TemplateEnhancementStrategy: deterministic sentiment-keyed template rewrite
- FallbackEnhancementStrategy: primary, then secondary on ExternalServiceDegraded

Every strategy takes (text, context) and returns a StrategyOutput.
"""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

import groq

from reviewqr.core.config import settings
from reviewqr.core.errors import ExternalServiceDegraded
from reviewqr.core.logging import log_event
from reviewqr.features.ai.analysis import lexical_sentiment
from reviewqr.features.ai.prompts import ENHANCEMENT_SYSTEM_PROMPT, build_enhancement_prompt


@dataclass(frozen=True)
class EnhancementContext:
    """Business details and style parameters for one enhancement."""
    business: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    business_id: Optional[str] = None
    review_id: Optional[str] = None


@dataclass(frozen=True)
class StrategyOutput:
    text: str
    strategy: str
    tokens_used: int
    prompt: str = ""


class EnhancementStrategy(Protocol):
    name: str

    def generate(self, text: str, context: EnhancementContext) -> StrategyOutput:
        ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return -(-len(text or "") // 4)


class GroqEnhancementStrategy:
    """Chat completion against Groq. Any failure surfaces as ExternalServiceDegraded."""

    name = "remote"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.model = model or settings.GROQ_MODEL
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self.max_tokens = max_tokens or settings.AI_MAX_TOKENS
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ExternalServiceDegraded("GROQ_API_KEY is not configured")
            self._client = groq.Groq(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def complete(self, system: str, prompt: str, temperature: float = 0.8) -> Tuple[str, int]:
        """Single non-streaming completion. Returns (text, total tokens)."""
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                temperature=temperature,
                max_tokens=self.max_tokens,
            )
            content = response.choices[0].message.content
        except groq.GroqError as exc:
            raise ExternalServiceDegraded(f"Groq request failed: {exc}") from exc
        except (AttributeError, IndexError) as exc:
            raise ExternalServiceDegraded(f"Malformed Groq response: {exc}") from exc

        text = (content or "").strip()
        if not text:
            raise ExternalServiceDegraded("Groq returned an empty response")

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or estimate_tokens(prompt + text)
        return text, int(tokens)

    def generate(self, text: str, context: EnhancementContext) -> StrategyOutput:
        prompt = build_enhancement_prompt(text, context.business, context.params)
        enhanced, tokens = self.complete(ENHANCEMENT_SYSTEM_PROMPT, prompt)
        return StrategyOutput(text=enhanced.strip('"'), strategy=self.name, tokens_used=tokens, prompt=prompt)


POSITIVE_OPENINGS = (
    "I recently had the pleasure of visiting {name}",
    "Just finished a great experience at {name}",
    "I'm thrilled to share my visit to {name}",
    "Had a wonderful time at {name}",
    "I was genuinely impressed by {name}",
    "My visit to {name} exceeded my expectations",
)

POSITIVE_MIDDLES = (
    "{text} What really stood out was their commitment to doing things well.",
    "{text} I was particularly impressed by their attention to detail.",
    "{text} The whole experience felt personal and well organized.",
    "{text} The quality of service really sets them apart.",
)

POSITIVE_ENDINGS = (
    "I'll definitely be returning and recommend them to everyone!",
    "They've earned a loyal customer.",
    "Already planning my next visit.",
    "If you're looking for quality, this is your place.",
)

NEUTRAL_TEMPLATES = (
    "I visited {name} recently and wanted to share my thoughts. {text} "
    "The {kind} provides reliable service that meets expectations. "
    "It's a solid, dependable choice for the area.",
    "Had a decent experience at {name}. {text} "
    "The service was consistent and the team was courteous. "
    "For a {kind}, it delivers what you'd expect.",
)

NEGATIVE_TEMPLATES = (
    "I want to share my recent experience at {name}. {text} "
    "Unfortunately there are several areas that need attention. "
    "I hope the management takes this feedback constructively.",
    "My visit to {name} left room for improvement. {text} "
    "I think honest feedback is important. "
    "With some adjustments, this {kind} could do much better.",
)


class TemplateEnhancementStrategy:
    """
    Offline rewrite. Same text, business and variation id give the same output.

    The customer's own words are kept verbatim inside the template.
    """

    name = "fallback"

    def _seed(self, text: str, context: EnhancementContext) -> int:
        key = f"{text}|{context.business.get('name', '')}|{context.params.get('variation_id') or ''}"
        return int(hashlib.sha256(key.encode("utf-8")).hexdigest()[:8], 16)

    def generate(self, text: str, context: EnhancementContext) -> StrategyOutput:
        name = context.business.get("name") or "this business"
        kind = (context.business.get("business_type") or "establishment").lower()
        body = text.strip()
        if body and body[-1] not in ".!?":
            body += "."
        seed = self._seed(body, context)
        sentiment = lexical_sentiment(body)

        if sentiment == "positive":
            enhanced = " ".join([
                POSITIVE_OPENINGS[seed % len(POSITIVE_OPENINGS)].format(name=name) + ".",
                POSITIVE_MIDDLES[(seed * 2) % len(POSITIVE_MIDDLES)].format(text=body),
                POSITIVE_ENDINGS[(seed * 3) % len(POSITIVE_ENDINGS)],
            ])
        else:
            templates = NEGATIVE_TEMPLATES if sentiment == "negative" else NEUTRAL_TEMPLATES
            enhanced = templates[seed % len(templates)].format(name=name, text=body, kind=kind)

        return StrategyOutput(text=enhanced, strategy=self.name, tokens_used=0)


class FallbackEnhancementStrategy:
    """Run `primary`; on ExternalServiceDegraded log it and run `secondary`."""

    def __init__(self, primary: EnhancementStrategy, secondary: EnhancementStrategy):
        self.primary = primary
        self.secondary = secondary
        self.name = primary.name

    def generate(self, text: str, context: EnhancementContext) -> StrategyOutput:
        started = time.perf_counter()
        try:
            return self.primary.generate(text, context)
        except ExternalServiceDegraded as exc:
            log_event(
                "warning",
                "ai.enhancement.degraded",
                business_id=context.business_id,
                review_id=context.review_id,
                event_type="ai_degraded",
                extra={
                    "reason": str(exc),
                    "primary": self.primary.name,
                    "elapsed_ms": int((time.perf_counter() - started) * 1000),
                },
            )
        return self.secondary.generate(text, context)
