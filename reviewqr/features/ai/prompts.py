"""Prompt templates for review enhancement and analysis.

The enhancement prompt is built from the business context plus style
parameters (style, tone, approach, variation level). The analysis prompt asks
for a strict JSON object.
"""

from typing import Any, Dict, Mapping, Optional

ENHANCEMENT_SYSTEM_PROMPT = (
    "You are a skilled content writer who helps customers express their "
    "experiences in a natural, human way. You keep the customer's meaning "
    "and never invent facts they did not mention. Reply with the review text only."
)

BASE_GUIDELINES = (
    "First fix capitalization, grammar, and spelling in the customer's words, "
    "then build the review around them. Write in first person with everyday "
    "language and natural contractions. Vary sentence length. End with an "
    "honest recommendation."
)

STYLES = {
    "default": "A warm, personal review of three to five sentences.",
    "rewrite": "Rewrite the review with fresh phrasing and a different opening.",
    "detailed": "A detailed review of five to seven sentences with specific, believable details.",
    "concise": "A concise review of two or three sentences.",
    "creative": "A vivid, expressive review with varied sentence structure.",
    "creative_rewrite": "Rewrite the review creatively; change structure and vocabulary.",
    "professional_rewrite": "Rewrite the review in a polished, professional voice.",
}

TONES = {"friendly", "professional", "enthusiastic", "casual", "balanced"}
VARIATION_LEVELS = {"low", "medium", "high"}

ANALYSIS_PROMPT = """Analyze the following review and provide:
1. Sentiment (positive/negative/neutral)
2. Key themes/keywords (max 5)

Review: "{text}"

Respond with JSON only:
{{"sentiment": "positive|negative|neutral", "keywords": ["keyword1", "keyword2"]}}"""


def build_enhancement_prompt(
    original_text: str,
    business: Optional[Mapping[str, Any]] = None,
    params: Optional[Mapping[str, Any]] = None,
) -> str:
    """User prompt for one enhancement call."""
    business = business or {}
    params = params or {}
    style = params.get("style") or "default"
    tone = params.get("tone") or "friendly"
    approach = params.get("approach") or "balanced"
    variation = params.get("variation_level") or "medium"

    lines = [
        BASE_GUIDELINES,
        f"Style: {STYLES.get(style, STYLES['default'])}",
        f"Tone: {tone} | Approach: {approach} | Variation level: {variation}",
        "",
        "Business context:",
        f"- Business name: {business.get('name') or 'the business'}",
        f"- Business type: {business.get('business_type') or 'service provider'}",
        f"- Industry: {business.get('industry') or 'various services'}",
        "",
        f'Customer\'s original words: "{original_text}"',
    ]
    return "\n".join(lines)


def build_analysis_prompt(text: str) -> str:
    return ANALYSIS_PROMPT.format(text=text.replace('"', "'"))


def style_params(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Normalize style parameters; unknown values fall back to defaults."""
    raw = raw or {}
    style = raw.get("style") or "default"
    tone = raw.get("tone") or "friendly"
    variation = raw.get("variation_level") or raw.get("variationLevel") or "medium"
    return {
        "style": style if style in STYLES else "default",
        "tone": tone if tone in TONES else "friendly",
        "approach": raw.get("approach") or raw.get("uniqueApproach") or "balanced",
        "variation_level": variation if variation in VARIATION_LEVELS else "medium",
        "variation_id": raw.get("variation_id") or raw.get("rewriteIteration"),
    }
