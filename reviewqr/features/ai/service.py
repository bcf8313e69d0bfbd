"""
reviewqr/features/ai/service.py

AI enhancement adapter.

Handles:
- Text quality gate before any model call
- Enhancement through the configured strategy (Groq with template fallback)
- Sentiment/keyword analysis and confidence scoring
- Per-call usage analytics (tokens, latency, success)

Degradation of the remote model is never visible to callers: they get a
fallback result tagged with strategy="fallback".
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.clock import normalize_now
from reviewqr.core.database import ai_usage_events, get_db_session
from reviewqr.core.errors import InvalidContentError
from reviewqr.features.ai.analysis import ReviewAnalyzer
from reviewqr.features.ai.strategies import (
    EnhancementContext,
    EnhancementStrategy,
    FallbackEnhancementStrategy,
    GroqEnhancementStrategy,
    TemplateEnhancementStrategy,
    estimate_tokens,
)
from reviewqr.features.ai.validators import (
    get_text_improvement_suggestions,
    improve_text_formatting,
    validate_review_text,
)


logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.7
LENGTH_BONUS = 0.1
FORMAT_BONUS = 0.1

OPERATION_ENHANCE = "REVIEW_ENHANCEMENT"
OPERATION_PREVIEW = "TEXT_ENHANCEMENT"


@dataclass(frozen=True)
class EnhancementResult:
    enhanced_text: str
    confidence: float
    sentiment: str
    keywords: List[str] = field(default_factory=list)
    strategy: str = "fallback"
    tokens_used: int = 0
    response_time_ms: int = 0
    improved_text: str = ""


def compute_confidence(original_text: str, enhanced_text: str) -> float:
    """
    0.7 base
    +0.1 when the enhanced word count is between 1x and 2x the original (inclusive)
    +0.1 when the enhanced text starts uppercase and contains a period
    Clamped to [0.0, 1.0].
    """
    confidence = BASE_CONFIDENCE
    original_words = len((original_text or "").split())
    enhanced_words = len((enhanced_text or "").split())
    if original_words and original_words <= enhanced_words <= original_words * 2:
        confidence += LENGTH_BONUS
    if enhanced_text and enhanced_text[0].isupper() and "." in enhanced_text:
        confidence += FORMAT_BONUS
    return round(min(1.0, max(0.0, confidence)), 2)


def record_ai_usage(
    *,
    business_id: Optional[str],
    operation: str,
    tokens_used: int,
    response_time_ms: int,
    success: bool,
    strategy: Optional[str] = None,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """Append one AI usage event. Write failures are logged, not raised."""
    try:
        with get_db_session() as session:
            session.execute(
                insert(ai_usage_events).values(
                    business_id=business_id,
                    operation=operation,
                    tokens_used=tokens_used,
                    response_time_ms=response_time_ms,
                    success=success,
                    strategy=strategy,
                    error_message=error_message[:500] if error_message else None,
                    created_at=normalize_now(now),
                )
            )
    except SQLAlchemyError as exc:
        logger.warning(f"AI usage event write failed: {exc}")


def get_ai_analytics(
    business_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Per-operation counts, tokens and average latency plus overall success rate.

    Defaults to the 30 days ending now.
    """
    end_at = normalize_now(end)
    start_at = normalize_now(start) if start else end_at - timedelta(days=30)

    window = (
        (ai_usage_events.c.business_id == business_id)
        & (ai_usage_events.c.created_at >= start_at)
        & (ai_usage_events.c.created_at <= end_at)
    )
    with get_db_session() as session:
        per_operation = session.execute(
            select(
                ai_usage_events.c.operation,
                func.count(ai_usage_events.c.id).label("count"),
                func.coalesce(func.sum(ai_usage_events.c.tokens_used), 0).label("tokens"),
                func.avg(ai_usage_events.c.response_time_ms).label("avg_ms"),
                func.sum(case((ai_usage_events.c.success.is_(True), 1), else_=0)).label("succeeded"),
            )
            .where(window)
            .group_by(ai_usage_events.c.operation)
            .order_by(ai_usage_events.c.operation)
        ).all()
        per_strategy = session.execute(
            select(ai_usage_events.c.strategy, func.count(ai_usage_events.c.id))
            .where(window)
            .where(ai_usage_events.c.strategy.is_not(None))
            .group_by(ai_usage_events.c.strategy)
        ).all()

    total = sum(row.count for row in per_operation)
    succeeded = sum(int(row.succeeded or 0) for row in per_operation)
    return {
        "businessId": business_id,
        "start": start_at.isoformat(),
        "end": end_at.isoformat(),
        "operationStats": [
            {
                "operation": row.operation,
                "count": row.count,
                "tokensUsed": int(row.tokens or 0),
                "avgResponseTimeMs": round(float(row.avg_ms or 0), 1),
            }
            for row in per_operation
        ],
        "strategies": {strategy: count for strategy, count in per_strategy},
        "totalUsage": total,
        "totalTokens": sum(int(row.tokens or 0) for row in per_operation),
        "successRate": round(succeeded / total * 100, 1) if total else 0.0,
    }


class AIEnhancer:
    """Validate, rewrite, analyze, score. One instance is shared by the app."""

    def __init__(self, strategy: EnhancementStrategy, analyzer: Optional[ReviewAnalyzer] = None):
        self.strategy = strategy
        self.analyzer = analyzer or ReviewAnalyzer()

    def enhance(
        self,
        raw_text: str,
        context: Optional[EnhancementContext] = None,
        *,
        operation: str = OPERATION_ENHANCE,
    ) -> EnhancementResult:
        """
        Raises:
            InvalidContentError: text failed the quality rules (no model call made)
        """
        context = context or EnhancementContext()
        started = time.perf_counter()

        errors = validate_review_text(raw_text)
        if errors:
            record_ai_usage(
                business_id=context.business_id,
                operation=operation,
                tokens_used=0,
                response_time_ms=0,
                success=False,
                error_message="; ".join(errors),
            )
            raise InvalidContentError(
                "Invalid review content",
                errors=errors,
                details={"suggestions": get_text_improvement_suggestions(raw_text)},
            )

        improved = improve_text_formatting(raw_text)
        try:
            output = self.strategy.generate(improved, context)
        except Exception as exc:
            record_ai_usage(
                business_id=context.business_id,
                operation=operation,
                tokens_used=0,
                response_time_ms=int((time.perf_counter() - started) * 1000),
                success=False,
                error_message=str(exc),
            )
            raise

        analysis = self.analyzer.analyze(output.text, business_id=context.business_id)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        tokens = output.tokens_used or estimate_tokens(improved + output.text)

        record_ai_usage(
            business_id=context.business_id,
            operation=operation,
            tokens_used=tokens,
            response_time_ms=elapsed_ms,
            success=True,
            strategy=output.strategy,
        )
        logger.info(
            "[ai] enhanced",
            extra={
                "business_id": context.business_id,
                "review_id": context.review_id,
                "strategy": output.strategy,
                "elapsed_ms": elapsed_ms,
            },
        )
        return EnhancementResult(
            enhanced_text=output.text,
            confidence=compute_confidence(raw_text, output.text),
            sentiment=analysis.sentiment,
            keywords=list(analysis.keywords),
            strategy=output.strategy,
            tokens_used=tokens,
            response_time_ms=elapsed_ms,
            improved_text=improved,
        )


def build_default_enhancer() -> AIEnhancer:
    """Groq primary, template secondary; analysis shares the Groq client."""
    remote = GroqEnhancementStrategy()
    return AIEnhancer(
        FallbackEnhancementStrategy(remote, TemplateEnhancementStrategy()),
        ReviewAnalyzer(remote),
    )


_enhancer: Optional[AIEnhancer] = None


def get_enhancer() -> AIEnhancer:
    global _enhancer
    if _enhancer is None:
        _enhancer = build_default_enhancer()
    return _enhancer


def set_enhancer(enhancer: Optional[AIEnhancer]) -> None:
    """Swap the shared enhancer (tests, alternate deployments). None resets to default."""
    global _enhancer
    _enhancer = enhancer
