"""Content-quality rules for customer review text.

Every rule that fails contributes one message, so callers can show the full
list at once. Nothing here calls out to a model.
"""

import re
from typing import List

MIN_LENGTH = 10
MIN_WORDS = 2
MAX_LENGTH = 5000
MAX_REPEATED_RUN = 4  # "soooo" is fine, "aaaaaa" is not

_REPEATED_RUN = re.compile(r"(.)\1{%d,}" % MAX_REPEATED_RUN, re.IGNORECASE)
_LINK = re.compile(r"(https?://|www\.)\S+", re.IGNORECASE)
_WORD = re.compile(r"[A-Za-zÀ-ɏ']+")
_VOWELS = set("aeiouyAEIOUYàáâäèéêëìíîïòóôöùúûü")

SPAM_PHRASES = (
    "click here",
    "buy now",
    "free money",
    "limited offer",
    "visit my profile",
    "earn cash",
    "work from home",
    "promo code",
)


def _mash_words(words: List[str]) -> int:
    """Words of 4+ letters with no vowel at all ("asdfg", "qwrtz")."""
    return sum(1 for word in words if len(word) >= 4 and not any(ch in _VOWELS for ch in word))


def validate_review_text(text: str) -> List[str]:
    """Return the list of failed rules; empty means the text is acceptable."""
    if text is None or not str(text).strip():
        return ["Review text is required"]

    stripped = str(text).strip()
    errors: List[str] = []

    if len(stripped) < MIN_LENGTH:
        errors.append(f"Review must be at least {MIN_LENGTH} characters long")
    if len(stripped) > MAX_LENGTH:
        errors.append(f"Review must be at most {MAX_LENGTH} characters long")

    words = _WORD.findall(stripped)
    if len(stripped.split()) < MIN_WORDS or len(words) < MIN_WORDS:
        errors.append(f"Review must contain at least {MIN_WORDS} words")
    if not words:
        errors.append("Review must contain letters")
    if _REPEATED_RUN.search(stripped):
        errors.append("Review contains long runs of repeated characters")
    if words and _mash_words(words) * 2 > len(words):
        errors.append("Review looks like random keyboard input")
    if _LINK.search(stripped):
        errors.append("Review must not contain links")

    lowered = stripped.lower()
    if any(phrase in lowered for phrase in SPAM_PHRASES):
        errors.append("Review looks like promotional spam")

    return errors


def get_text_improvement_suggestions(text: str) -> List[str]:
    """Friendly hints that accompany a validation failure."""
    suggestions = []
    stripped = (text or "").strip()
    if len(stripped.split()) < 5:
        suggestions.append("Tell us a bit more about what you experienced")
    if stripped and stripped == stripped.upper() and any(ch.isalpha() for ch in stripped):
        suggestions.append("Try writing in normal sentence case instead of all caps")
    if _LINK.search(stripped):
        suggestions.append("Remove links from your review")
    if not suggestions:
        suggestions.append("Describe the service, the staff, or the product in your own words")
    return suggestions


def improve_text_formatting(text: str) -> str:
    """Normalize whitespace, capitalize sentences, standalone "i", and close with a period."""
    cleaned = re.sub(r"\s+", " ", (text or "").strip())
    if not cleaned:
        return cleaned
    cleaned = re.sub(r"\s+([,.!?;:])", r"\1", cleaned)
    cleaned = re.sub(r"\bi\b", "I", cleaned)
    cleaned = re.sub(
        r"(^|[.!?]\s+)([a-z])",
        lambda m: m.group(1) + m.group(2).upper(),
        cleaned,
    )
    if cleaned[-1] not in ".!?":
        cleaned += "."
    return cleaned
