"""Review sentiment and keyword analysis.

A remote JSON call is tried first; the lexical heuristic below is used when
the remote side is unavailable or answers with something unparseable.
"""

import json
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, List, Optional

from reviewqr.core.errors import ExternalServiceDegraded
from reviewqr.core.logging import log_event
from reviewqr.features.ai.prompts import build_analysis_prompt

SENTIMENTS = {"positive", "negative", "neutral"}
MAX_KEYWORDS = 5

POSITIVE_WORDS = (
    "good", "great", "excellent", "amazing", "wonderful", "fantastic", "love",
    "perfect", "awesome", "outstanding", "nice", "pleasant", "satisfied",
    "happy", "impressed", "recommend", "friendly", "delicious",
)
NEGATIVE_WORDS = (
    "bad", "terrible", "awful", "horrible", "disappointing", "poor", "worst",
    "hate", "disgusting", "rude", "slow", "dirty", "expensive", "unsatisfied",
    "frustrated", "cold",
)

STOPWORDS = {
    "about", "after", "again", "also", "been", "before", "being", "could",
    "does", "from", "have", "here", "into", "just", "like", "more", "most",
    "much", "only", "other", "over", "really", "same", "some", "such", "than",
    "that", "their", "them", "then", "there", "these", "they", "this", "very",
    "visit", "want", "were", "what", "when", "which", "while", "will", "with",
    "would", "your",
}

_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)
_WORD = re.compile(r"[a-z']+")


@dataclass(frozen=True)
class ReviewAnalysis:
    sentiment: str = "neutral"
    keywords: List[str] = field(default_factory=list)
    source: str = "none"


def lexical_sentiment(text: str) -> str:
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """Most frequent content words (4+ letters, no stopwords), ties by first appearance."""
    words = [w.strip("'") for w in _WORD.findall((text or "").lower())]
    counts = Counter(w for w in words if len(w) >= 4 and w not in STOPWORDS)
    return [word for word, _ in counts.most_common(limit)]


def heuristic_analysis(text: str) -> ReviewAnalysis:
    return ReviewAnalysis(
        sentiment=lexical_sentiment(text),
        keywords=extract_keywords(text),
        source="heuristic",
    )


def parse_analysis(raw: str) -> ReviewAnalysis:
    """Parse a model's JSON answer, tolerating markdown fences.

    Raises:
        ValueError: not JSON or wrong shape
    """
    cleaned = _FENCE.sub("", raw or "").strip()
    data: Any = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("analysis must be a JSON object")
    sentiment = str(data.get("sentiment", "")).lower()
    if sentiment not in SENTIMENTS:
        raise ValueError(f"unknown sentiment {sentiment!r}")
    keywords = data.get("keywords") or []
    if not isinstance(keywords, list):
        raise ValueError("keywords must be a list")
    return ReviewAnalysis(
        sentiment=sentiment,
        keywords=[str(k) for k in keywords if str(k).strip()][:MAX_KEYWORDS],
        source="remote",
    )


class ReviewAnalyzer:
    """`remote` is anything with complete(system, prompt, temperature) -> (text, tokens)."""

    def __init__(self, remote: Optional[Any] = None):
        self.remote = remote

    def analyze(self, text: str, *, business_id: Optional[str] = None) -> ReviewAnalysis:
        if not text or not text.strip():
            return ReviewAnalysis()
        if self.remote is not None:
            try:
                raw, _ = self.remote.complete(
                    "You analyze customer reviews and answer with JSON only.",
                    build_analysis_prompt(text),
                    temperature=0.0,
                )
                return parse_analysis(raw)
            except (ExternalServiceDegraded, ValueError) as exc:
                log_event(
                    "info",
                    "ai.analysis.heuristic",
                    business_id=business_id,
                    event_type="ai_analysis_fallback",
                    extra={"reason": str(exc)},
                )
        return heuristic_analysis(text)


def analyze_review(text: str, analyzer: Optional[ReviewAnalyzer] = None) -> ReviewAnalysis:
    return (analyzer or ReviewAnalyzer()).analyze(text)
