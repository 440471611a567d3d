"""
Unit tests for the classification client (no AI service required).
Run: pytest tests/test_classifier.py -v
"""

import pytest

from ticketai.classifier import Classifier, clamp, normalize_classification
from ticketai.errors import (
    MalformedResponseError,
    PermanentServiceError,
    ServiceErrorKind,
    TransientServiceError,
)
from ticketai.models import ClassificationJob, Priority, SentimentLabel, TicketCategory
from tests.fakes import FakeService

GOOD_RESPONSE = {
    "category": "billing",
    "priority": "high",
    "sentiment": {"label": "negative", "score": -0.4},
    "confidence": {"category": 0.9, "priority": 0.6, "sentiment": 0.75},
    "reasoning": "Customer was charged twice.",
}


def _assert_bounded(result):
    for value in (
        result.confidence.category,
        result.confidence.priority,
        result.confidence.sentiment,
        result.overall_confidence,
    ):
        assert 0.0 <= value <= 1.0
    assert -1.0 <= result.sentiment.score <= 1.0
    assert result.category in TicketCategory
    assert result.priority in Priority
    assert result.sentiment.label in SentimentLabel


class TestClassify:
    def test_valid_response(self):
        result = Classifier(FakeService(GOOD_RESPONSE)).classify("Invoice", "Charged twice")
        assert result.category == TicketCategory.BILLING
        assert result.priority == Priority.HIGH
        assert result.sentiment.label == SentimentLabel.NEGATIVE
        assert result.sentiment.score == pytest.approx(-0.4)
        assert result.overall_confidence == pytest.approx((0.9 + 0.6 + 0.75) / 3)
        assert result.reasoning == "Customer was charged twice."
        assert result.model_version == "test-model"
        assert result.model_provider == "test"
        assert result.failure is None
        assert result.processing_time_ms >= 0

    def test_prompt_contains_ticket_text(self):
        service = FakeService(GOOD_RESPONSE)
        Classifier(service).classify("Login broken", "Cannot sign in since Monday")
        _, prompt, json_mode = service.calls[0]
        assert "Login broken" in prompt
        assert "Cannot sign in since Monday" in prompt
        assert json_mode is True

    def test_unknown_category_defaults_and_keeps_clamped_confidence(self):
        response = dict(GOOD_RESPONSE, category="xyz", confidence={"category": 1.7, "priority": 0.5, "sentiment": 0.5})
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.category == TicketCategory.GENERAL
        assert result.confidence.category == 1.0
        assert result.failure is None

    def test_invalid_enums_map_to_defaults(self):
        response = {"category": 42, "priority": "critical", "sentiment": {"label": "furious", "score": 0.2}}
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.category == TicketCategory.GENERAL
        assert result.priority == Priority.MEDIUM
        assert result.sentiment.label == SentimentLabel.NEUTRAL

    def test_labels_are_case_insensitive(self):
        response = dict(GOOD_RESPONSE, category=" Technical ", priority="URGENT")
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.category == TicketCategory.TECHNICAL
        assert result.priority == Priority.URGENT

    def test_out_of_range_numbers_are_clamped(self):
        response = dict(
            GOOD_RESPONSE,
            sentiment={"label": "very_negative", "score": -3.5},
            confidence={"category": -0.2, "priority": 9, "sentiment": "0.4"},
        )
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.sentiment.score == -1.0
        assert result.confidence.category == 0.0
        assert result.confidence.priority == 1.0
        assert result.confidence.sentiment == pytest.approx(0.4)
        _assert_bounded(result)

    def test_huge_integers_are_clamped_not_failed(self):
        response = dict(
            GOOD_RESPONSE,
            sentiment={"label": "negative", "score": -(10**400)},
            confidence={"category": 10**400, "priority": 0.5, "sentiment": 0.5},
        )
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.failure is None
        assert result.confidence.category == 1.0
        assert result.sentiment.score == -1.0
        assert result.category == TicketCategory.BILLING

    def test_missing_confidence_uses_half_but_zero_is_kept(self):
        response = dict(GOOD_RESPONSE, confidence={"category": 0})
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.confidence.category == 0.0
        assert result.confidence.priority == 0.5
        assert result.confidence.sentiment == 0.5

    def test_non_dict_nested_fields(self):
        response = {"category": "bug", "sentiment": "angry", "confidence": [1, 2, 3], "reasoning": 12}
        result = Classifier(FakeService(response)).classify("s", "b")
        assert result.category == TicketCategory.BUG
        assert result.sentiment.label == SentimentLabel.NEUTRAL
        assert result.sentiment.score == 0.0
        assert result.reasoning == ""
        _assert_bounded(result)


class TestFallback:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (TransientServiceError(ServiceErrorKind.TIMEOUT), ServiceErrorKind.TIMEOUT),
            (TransientServiceError(ServiceErrorKind.RATE_LIMITED), ServiceErrorKind.RATE_LIMITED),
            (MalformedResponseError("not json"), ServiceErrorKind.MALFORMED_RESPONSE),
            (PermanentServiceError(ServiceErrorKind.AUTHENTICATION), ServiceErrorKind.AUTHENTICATION),
            (RuntimeError("boom"), ServiceErrorKind.UNKNOWN),
        ],
    )
    def test_service_failure_returns_fallback(self, error, kind):
        result = Classifier(FakeService(error=error)).classify("Invoice", "Charged twice")
        assert result.failure == kind
        assert result.failed
        assert result.category == TicketCategory.GENERAL
        assert result.priority == Priority.MEDIUM
        assert result.sentiment.label == SentimentLabel.NEUTRAL
        assert result.sentiment.score == 0.0
        assert result.confidence.category == 0.0
        assert result.confidence.priority == 0.0
        assert result.confidence.sentiment == 0.0
        assert result.overall_confidence == 0.0
        assert result.reasoning == ""
        assert result.processing_time_ms >= 0


class TestBatch:
    def test_batch_is_sequential_and_ordered(self):
        service = FakeService(GOOD_RESPONSE)
        jobs = [
            ClassificationJob(ticket_id=f"T{i}", tenant_id="acme", subject=f"subject {i}", body="b")
            for i in range(3)
        ]
        results = Classifier(service).classify_batch(jobs)
        assert [tid for tid, _ in results] == ["T0", "T1", "T2"]
        assert [("subject %d" % i) in call[1] for i, call in enumerate(service.calls)] == [True] * 3


class TestNormalization:
    def test_overall_confidence_is_mean(self):
        raw = dict(GOOD_RESPONSE, confidence={"category": 0.2, "priority": 0.4, "sentiment": 0.9})
        result = normalize_classification(raw)
        assert result.overall_confidence == pytest.approx(0.5)

    def test_garbage_payload(self):
        result = normalize_classification("not a dict")
        assert result.category == TicketCategory.GENERAL
        _assert_bounded(result)

    @pytest.mark.parametrize(
        "value, expected",
        [(None, 0.5), (True, 0.5), ("abc", 0.5), (float("nan"), 0.5), (float("inf"), 1.0), (0.3, 0.3),
         (10**400, 1.0), (-(10**400), 0.0), ("1e999", 1.0)],
    )
    def test_clamp(self, value, expected):
        assert clamp(value, 0.0, 1.0, 0.5) == expected


class TestLanguageAndEntities:
    def test_detect_language(self):
        service = FakeService(" ES\n")
        assert Classifier(service).detect_language("hola " * 200) == "es"
        _, prompt, json_mode = service.calls[0]
        assert len(prompt) == 500
        assert json_mode is False

    def test_detect_language_falls_back_to_english(self):
        assert Classifier(FakeService("Spanish")).detect_language("hola") == "en"
        error = TransientServiceError(ServiceErrorKind.TIMEOUT)
        assert Classifier(FakeService(error=error)).detect_language("hola") == "en"

    def test_extract_entities(self):
        service = FakeService({"orderIds": ["ORD-1", 7, ""], "emails": ["a@b.com"], "phones": "555"})
        entities = Classifier(service).extract_entities("order ORD-1 from a@b.com")
        assert entities.order_ids == ["ORD-1"]
        assert entities.emails == ["a@b.com"]
        assert entities.phones == []
        assert entities.dates == []

    def test_extract_entities_on_failure(self):
        error = MalformedResponseError("bad")
        entities = Classifier(FakeService(error=error)).extract_entities("text")
        assert entities.model_dump() == {
            "order_ids": [], "account_numbers": [], "emails": [], "phones": [], "products": [], "dates": [],
        }

    def test_analyze_sentiment_clamps_fields(self):
        service = FakeService({
            "score": -1.8,
            "magnitude": "0.9",
            "emotions": {"joy": 0.0, "anger": 1.4, "sadness": -0.2, "fear": "lots"},
        })
        analysis = Classifier(service).analyze_sentiment("This is the third time I've been charged!")
        assert analysis.score == -1.0
        assert analysis.magnitude == pytest.approx(0.9)
        assert analysis.emotions.anger == 1.0
        assert analysis.emotions.sadness == 0.0
        assert analysis.emotions.fear == 0.0
        assert analysis.emotions.disgust == 0.0
        assert "third time" in service.calls[0][1]

    @pytest.mark.parametrize(
        "service",
        [FakeService(error=TransientServiceError(ServiceErrorKind.TIMEOUT)), FakeService(error=KeyError("x")),
         FakeService("not an object")],
    )
    def test_analyze_sentiment_zeroed_on_failure(self, service):
        analysis = Classifier(service).analyze_sentiment("text")
        assert analysis.model_dump() == {
            "score": 0.0,
            "magnitude": 0.0,
            "emotions": {"joy": 0.0, "anger": 0.0, "sadness": 0.0, "fear": 0.0, "disgust": 0.0},
        }
