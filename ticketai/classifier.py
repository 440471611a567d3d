"""
Classification client: turns untrusted AI-service output into a bounded ClassificationResult.

`Classifier.classify` never raises. Any service failure yields the fallback
result (defaults everywhere, zero confidence) tagged with the failure kind.
"""

import logging
import math
import re
import time
from typing import Any, Iterable, Optional

from ticketai.ai_client import CompletionService, build_completion_service
from ticketai.errors import ServiceError, ServiceErrorKind
from ticketai.models import (
    ClassificationResult,
    ConfidenceScores,
    Emotions,
    ExtractedEntities,
    Priority,
    Sentiment,
    SentimentAnalysis,
    SentimentLabel,
    TicketCategory,
)

logger = logging.getLogger(__name__)

CATEGORIES = [c.value for c in TicketCategory]
PRIORITIES = [p.value for p in Priority]
SENTIMENTS = [s.value for s in SentimentLabel]

# Used when the service omits a confidence value (an explicit 0 is kept).
MISSING_CONFIDENCE = 0.5
LANGUAGE_SAMPLE_CHARS = 500
EMOTIONS = ("joy", "anger", "sadness", "fear", "disgust")
DEFAULT_LANGUAGE = "en"
_LANGUAGE_RE = re.compile(r"^[a-z]{2}$")

CLASSIFY_SYSTEM_PROMPT = (
    "You are an AI assistant that classifies customer support tickets. "
    "Be accurate and provide confidence scores."
)

CLASSIFY_PROMPT = """Analyze the following customer support ticket and provide:
1. Category (choose from: {categories})
2. Priority (choose from: {priorities})
3. Sentiment (choose from: {sentiments})
4. Sentiment score (number between -1.0 and 1.0)
5. Confidence scores for each prediction (0.0 to 1.0)

Ticket Subject: {subject}
Ticket Body: {body}

Respond in JSON format:
{{
  "category": "string",
  "priority": "string",
  "sentiment": {{"label": "string", "score": number}},
  "confidence": {{"category": number, "priority": number, "sentiment": number}},
  "reasoning": "string"
}}"""

LANGUAGE_SYSTEM_PROMPT = (
    "Detect the language of the provided text. Respond with only the ISO 639-1 "
    'language code (e.g., "en", "es", "fr", "zh", "ar").'
)

SENTIMENT_SYSTEM_PROMPT = "You are a sentiment analysis expert. Provide detailed emotion breakdowns."

SENTIMENT_PROMPT = """Analyze the sentiment of the following text in detail:

Text: "{text}"

Provide:
1. Overall sentiment score (-1.0 to 1.0)
2. Sentiment magnitude/strength (0.0 to 1.0)
3. Emotion breakdown (joy, anger, sadness, fear, disgust) - each 0.0 to 1.0

Respond in JSON format:
{{
  "score": number,
  "magnitude": number,
  "emotions": {{"joy": number, "anger": number, "sadness": number, "fear": number, "disgust": number}}
}}"""

ENTITIES_SYSTEM_PROMPT = "Extract structured entities from support tickets."

ENTITIES_PROMPT = """Extract key entities from the following support ticket:

Text: "{text}"

Extract order IDs, account numbers, email addresses, phone numbers, product names and dates.

Respond in JSON format:
{{
  "orderIds": ["string"],
  "accountNumbers": ["string"],
  "emails": ["string"],
  "phones": ["string"],
  "products": ["string"],
  "dates": ["string"]
}}"""


def _number(value: Any) -> Optional[float]:
    """Float from an untrusted value (possibly infinite), or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except OverflowError:
        # integers beyond float range
        return (math.inf if value > 0 else -math.inf) if isinstance(value, int) else None
    except (TypeError, ValueError):
        return None
    if math.isnan(f):
        return None
    return f


def clamp(value: Any, low: float, high: float, default: float) -> float:
    f = _number(value)
    if f is None:
        return default
    return max(low, min(high, f))


def _enum_value(enum_cls, value: Any, default):
    if isinstance(value, str):
        candidate = value.strip().lower()
        for member in enum_cls:
            if member.value == candidate:
                return member
    logger.debug("Replacing out-of-domain %s value %r with %s.", enum_cls.__name__, value, default.value)
    return default


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def normalize_classification(
    raw: Any,
    model_version: str = "",
    model_provider: str = "",
    processing_time_ms: int = 0,
) -> ClassificationResult:
    """
    Validate and clamp a raw service payload. Invalid labels map to their
    default (general / medium / neutral); a label fix keeps the service's
    clamped confidence for that field.
    """
    raw = _as_dict(raw)
    sentiment_raw = _as_dict(raw.get("sentiment"))
    confidence_raw = _as_dict(raw.get("confidence"))

    confidence = ConfidenceScores(
        category=clamp(confidence_raw.get("category"), 0.0, 1.0, MISSING_CONFIDENCE),
        priority=clamp(confidence_raw.get("priority"), 0.0, 1.0, MISSING_CONFIDENCE),
        sentiment=clamp(confidence_raw.get("sentiment"), 0.0, 1.0, MISSING_CONFIDENCE),
    )
    reasoning = raw.get("reasoning")
    return ClassificationResult(
        category=_enum_value(TicketCategory, raw.get("category"), TicketCategory.GENERAL),
        priority=_enum_value(Priority, raw.get("priority"), Priority.MEDIUM),
        sentiment=Sentiment(
            label=_enum_value(SentimentLabel, sentiment_raw.get("label"), SentimentLabel.NEUTRAL),
            score=clamp(sentiment_raw.get("score"), -1.0, 1.0, 0.0),
        ),
        confidence=confidence,
        overall_confidence=min(1.0, max(0.0, confidence.mean())),
        reasoning=reasoning if isinstance(reasoning, str) else "",
        model_version=model_version,
        model_provider=model_provider,
        processing_time_ms=max(0, int(processing_time_ms)),
    )


def fallback_classification(
    failure: ServiceErrorKind,
    model_version: str = "",
    model_provider: str = "",
    processing_time_ms: int = 0,
) -> ClassificationResult:
    """Result used when the service call failed: every field at its default, zero confidence."""
    return ClassificationResult(
        category=TicketCategory.GENERAL,
        priority=Priority.MEDIUM,
        sentiment=Sentiment(label=SentimentLabel.NEUTRAL, score=0.0),
        confidence=ConfidenceScores(category=0.0, priority=0.0, sentiment=0.0),
        overall_confidence=0.0,
        reasoning="",
        model_version=model_version,
        model_provider=model_provider,
        processing_time_ms=max(0, int(processing_time_ms)),
        failure=failure,
    )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v.strip()]


class Classifier:
    """
    Classification capability. Construct once at process start and pass it to
    workers and other callers.
    """

    def __init__(
        self,
        service: CompletionService,
        model_version: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self._service = service
        self.model_version = model_version or getattr(service, "model", "")
        self.provider = provider or getattr(service, "provider", "")

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)

    def classify(self, subject: str, body: str) -> ClassificationResult:
        """Classify one ticket. Never raises; failures produce the fallback result."""
        start = time.perf_counter()
        prompt = CLASSIFY_PROMPT.format(
            categories=", ".join(CATEGORIES),
            priorities=", ".join(PRIORITIES),
            sentiments=", ".join(SENTIMENTS),
            subject=subject or "",
            body=body or "",
        )
        try:
            raw = self._service.complete(CLASSIFY_SYSTEM_PROMPT, prompt)
            return normalize_classification(
                raw,
                model_version=self.model_version,
                model_provider=self.provider,
                processing_time_ms=self._elapsed_ms(start),
            )
        except ServiceError as e:
            logger.error("Classification failed (%s): %s", e.kind.value, e)
            failure = e.kind
        except Exception:
            logger.exception("Classification failed with an unexpected error")
            failure = ServiceErrorKind.UNKNOWN
        return fallback_classification(
            failure,
            model_version=self.model_version,
            model_provider=self.provider,
            processing_time_ms=self._elapsed_ms(start),
        )

    def classify_batch(self, tickets: Iterable[Any]) -> list[tuple[str, ClassificationResult]]:
        """
        Classify tickets one at a time, in order. Sequential on purpose: it keeps
        a single in-flight request against the service's rate limits.
        """
        results = []
        for ticket in tickets:
            result = self.classify(ticket.subject, ticket.body)
            results.append((ticket.ticket_id, result))
        return results

    def detect_language(self, text: str) -> str:
        """ISO 639-1 code for `text`; 'en' when detection fails."""
        try:
            answer = self._service.complete(
                LANGUAGE_SYSTEM_PROMPT,
                (text or "")[:LANGUAGE_SAMPLE_CHARS],
                json_mode=False,
                temperature=0,
                max_tokens=10,
            )
        except ServiceError as e:
            logger.warning("Language detection failed (%s): %s", e.kind.value, e)
            return DEFAULT_LANGUAGE
        except Exception:
            logger.exception("Language detection failed with an unexpected error")
            return DEFAULT_LANGUAGE
        code = str(answer).strip().strip('"').lower()
        return code if _LANGUAGE_RE.match(code) else DEFAULT_LANGUAGE

    def analyze_sentiment(self, text: str) -> SentimentAnalysis:
        """Score, magnitude and emotion breakdown for `text`, all clamped; zeros on failure."""
        try:
            raw = self._service.complete(SENTIMENT_SYSTEM_PROMPT, SENTIMENT_PROMPT.format(text=text or ""))
        except ServiceError as e:
            logger.warning("Sentiment analysis failed (%s): %s", e.kind.value, e)
            return SentimentAnalysis()
        except Exception:
            logger.exception("Sentiment analysis failed with an unexpected error")
            return SentimentAnalysis()
        raw = _as_dict(raw)
        emotions = _as_dict(raw.get("emotions"))
        return SentimentAnalysis(
            score=clamp(raw.get("score"), -1.0, 1.0, 0.0),
            magnitude=clamp(raw.get("magnitude"), 0.0, 1.0, 0.0),
            emotions=Emotions(**{name: clamp(emotions.get(name), 0.0, 1.0, 0.0) for name in EMOTIONS}),
        )

    def extract_entities(self, text: str) -> ExtractedEntities:
        """Order ids, account numbers, emails, phones, products and dates; empty lists on failure."""
        try:
            raw = self._service.complete(ENTITIES_SYSTEM_PROMPT, ENTITIES_PROMPT.format(text=text or ""))
        except ServiceError as e:
            logger.warning("Entity extraction failed (%s): %s", e.kind.value, e)
            return ExtractedEntities()
        except Exception:
            logger.exception("Entity extraction failed with an unexpected error")
            return ExtractedEntities()
        raw = _as_dict(raw)
        return ExtractedEntities(
            order_ids=_string_list(raw.get("orderIds")),
            account_numbers=_string_list(raw.get("accountNumbers")),
            emails=_string_list(raw.get("emails")),
            phones=_string_list(raw.get("phones")),
            products=_string_list(raw.get("products")),
            dates=_string_list(raw.get("dates")),
        )


def build_classifier(service: Optional[CompletionService] = None) -> Classifier:
    """Classifier wired to the configured AI service."""
    return Classifier(service or build_completion_service())
