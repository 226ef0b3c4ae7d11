import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from civiclens.core.config import GeminiConfig
from civiclens.services.gemini_service import (
    GeminiService,
    clamp_confidence,
    extract_json_block,
    validate_category,
    validate_priority,
)

IMAGE_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


def make_model(*replies):
    model = MagicMock()
    side_effect = [r if isinstance(r, Exception) else MagicMock(text=r) for r in replies]
    model.generate_content_async = AsyncMock(side_effect=side_effect)
    return model


def make_service(model, **overrides) -> GeminiService:
    config = GeminiConfig(api_key="test-key", max_retries=2, base_delay_ms=0, **overrides)
    return GeminiService(config, model=model)


def analysis_payload(**overrides):
    payload = {
        "description": "A deep pothole filled with water",
        "title": "Pothole on road",
        "category": "Roads",
        "priority": "High",
        "department": "road",
        "confidence": {"description": 0.9, "category": 0.8, "priority": 0.7},
        "metadata": {
            "detectedObjects": ["pothole", "car"],
            "sceneDescription": "Urban street",
            "issueType": "road damage",
            "weather": "rainy",
        },
    }
    payload.update(overrides)
    return payload


class TestExtractJsonBlock:
    def test_extracts_object_wrapped_in_prose(self):
        text = 'Sure! Here is the analysis:\n```json\n{"a": {"b": 1}}\n```\nHope it helps {not json}'
        assert extract_json_block(text) == '{"a": {"b": 1}}'

    def test_ignores_braces_inside_strings(self):
        text = 'x {"description": "a } tricky { value", "n": 2} y'
        assert json.loads(extract_json_block(text)) == {"description": "a } tricky { value", "n": 2}

    def test_returns_none_without_balanced_block(self):
        assert extract_json_block("no json here") is None
        assert extract_json_block('{"open": true') is None
        assert extract_json_block("") is None


class TestFieldValidators:
    @pytest.mark.parametrize("value", ["Potholes", "", None, 7, "roads and more", ["Roads"]])
    def test_unknown_category_defaults_to_other(self, value):
        assert validate_category(value) == "Other"

    def test_category_matching_is_case_insensitive(self):
        assert validate_category(" garbage ") == "Garbage"

    @pytest.mark.parametrize("value", ["Urgent", "critical", None, 3, ""])
    def test_unknown_priority_defaults_to_medium(self, value):
        assert validate_priority(value) == "Medium"

    @pytest.mark.parametrize(
        "raw, expected",
        [(1.7, 1.0), (-3, 0.0), (0.42, 0.42), ("0.3", 0.3), (0, 0.0), (None, 0.5), ("high", 0.5), (float("nan"), 0.5), (True, 0.5)],
    )
    def test_confidence_is_clamped(self, raw, expected):
        assert clamp_confidence(raw) == pytest.approx(expected)


class TestAnalyzeComplaintImage:
    async def test_parses_valid_response(self):
        model = make_model("Analysis:\n" + json.dumps(analysis_payload()))
        service = make_service(model)

        record = await service.analyze_complaint_image(IMAGE_BYTES, "pothole near school", "image/jpeg")

        assert record.fallback is False
        assert record.category == "Roads"
        assert record.priority == "High"
        assert record.department == "road"  # raw; normalized by the orchestrator
        assert record.confidence.description == pytest.approx(0.9)
        assert record.metadata.detected_objects == ["pothole", "car"]
        assert record.metadata.additional_properties == {"weather": "rainy"}
        assert record.ai_service_version == "gemini-2.5-flash"
        assert record.processing_time_ms >= 1

        parts = model.generate_content_async.await_args.args[0]
        assert "pothole near school" in parts[0]
        assert parts[1] == {"mime_type": "image/jpeg", "data": IMAGE_BYTES}

    async def test_out_of_range_values_are_repaired(self):
        payload = analysis_payload(
            category="Volcano",
            priority="EXTREME",
            department=None,
            confidence={"description": 4, "category": -1},
            metadata="not an object",
        )
        service = make_service(make_model(json.dumps(payload)))

        record = await service.analyze_complaint_image(IMAGE_BYTES)

        assert record.category == "Other"
        assert record.priority == "Medium"
        assert record.department == "GENERAL"  # derived from category
        assert record.confidence.description == 1.0
        assert record.confidence.category == 0.0
        assert record.confidence.priority == 0.5
        assert record.metadata.detected_objects == []

    async def test_missing_department_is_derived_from_category(self):
        payload = analysis_payload(category="Garbage")
        del payload["department"]
        service = make_service(make_model(json.dumps(payload)))

        record = await service.analyze_complaint_image(IMAGE_BYTES)

        assert record.department == "WASTE_MANAGEMENT"

    async def test_unparseable_reply_returns_zero_confidence_default(self):
        service = make_service(make_model("I could not analyze this image, sorry."))

        record = await service.analyze_complaint_image(IMAGE_BYTES)

        assert record.fallback is True
        assert (record.category, record.priority, record.department) == ("Other", "Medium", "General")
        assert record.confidence.model_dump() == {"description": 0.0, "category": 0.0, "priority": 0.0}

    async def test_call_failure_after_retries_returns_fallback(self):
        model = make_model(RuntimeError("quota exceeded"), RuntimeError("quota exceeded"))
        service = make_service(model)

        record = await service.analyze_complaint_image(IMAGE_BYTES)

        assert model.generate_content_async.await_count == 2
        assert record.fallback is True
        assert record.error == "quota exceeded"
        assert record.category == "Other"

    async def test_accepts_data_uri_input(self):
        data_uri = "data:image/png;base64," + base64.b64encode(IMAGE_BYTES).decode()
        model = make_model(json.dumps(analysis_payload()))
        service = make_service(model)

        await service.analyze_complaint_image(data_uri)

        image_part = model.generate_content_async.await_args.args[0][1]
        assert image_part == {"mime_type": "image/png", "data": IMAGE_BYTES}

    async def test_invalid_data_uri_never_raises(self):
        service = make_service(make_model())

        record = await service.analyze_complaint_image("data:image/png;base64,!!!not-base64!!!")

        assert record.fallback is True


class TestSupplementaryCalls:
    async def test_generate_description(self):
        service = make_service(make_model("  Broken streetlight on a pole.  "))

        result = await service.generate_description(IMAGE_BYTES, "image/jpeg")

        assert result["description"] == "Broken streetlight on a pole."
        assert result["confidence"] == 0.8

    async def test_generate_description_failure(self):
        service = make_service(make_model(RuntimeError("down"), RuntimeError("down")))

        result = await service.generate_description(IMAGE_BYTES)

        assert result["description"] == ""
        assert result["confidence"] == 0.0
        assert result["error"] == "down"

    async def test_categorize_complaint(self):
        reply = json.dumps({"category": "Water", "priority": "Low", "confidence": {"category": 0.6}})
        service = make_service(make_model(reply))

        result = await service.categorize_complaint("Leaking pipe", IMAGE_BYTES)

        assert result["category"] == "Water"
        assert result["department"] == "WATER_SEWERAGE"
        assert result["priority"] == "Low"
        assert result["confidence"] == {"category": 0.6, "priority": 0.5}

    async def test_categorize_complaint_fallback(self):
        service = make_service(make_model("nothing useful"))

        result = await service.categorize_complaint("???", IMAGE_BYTES)

        assert result["category"] == "Other"
        assert result["department"] == "GENERAL"
        assert result["confidence"] == {"category": 0.0, "priority": 0.0}
