from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from civiclens.core.config import GEMINI_KEY_PLACEHOLDER, GeminiConfig
from civiclens.models.complaint_model import AIRecord
from civiclens.services.complaint_ai import ComplaintAIService


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "pothole.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\nfake")
    return str(path)


@pytest.mark.parametrize("api_key", [None, "", GEMINI_KEY_PLACEHOLDER])
async def test_unconfigured_client_returns_fallback_without_network(api_key, photo):
    with patch("civiclens.services.complaint_ai.GeminiService") as gemini_cls:
        service = ComplaintAIService(GeminiConfig(api_key=api_key))
        record = await service.analyze_complaint_image(photo, "image/png", "Big pothole")

    gemini_cls.assert_not_called()
    assert record.fallback is True
    assert record.category == "Other"
    assert record.priority == "Medium"
    assert record.department == "GENERAL"
    assert record.confidence.model_dump() == {"description": 0.0, "category": 0.0, "priority": 0.0}
    assert record.description == "Big pothole"


async def test_department_is_normalized_on_success(photo):
    gemini = MagicMock()
    gemini.analyze_complaint_image = AsyncMock(
        return_value=AIRecord(category="Garbage", priority="High", department="garbage dump")
    )
    service = ComplaintAIService(GeminiConfig(api_key="real-key"), gemini=gemini)

    record = await service.analyze_complaint_image(photo, "image/png", "")

    assert record.department == "WASTE_MANAGEMENT"
    data_url = gemini.analyze_complaint_image.await_args.args[0]
    assert data_url.startswith("data:image/png;base64,")


async def test_department_is_normalized_on_client_fallback(photo):
    gemini = MagicMock()
    gemini.analyze_complaint_image = AsyncMock(
        return_value=AIRecord(department="General", fallback=True)
    )
    service = ComplaintAIService(GeminiConfig(api_key="real-key"), gemini=gemini)

    record = await service.analyze_complaint_image(photo, None, "")

    assert record.fallback is True
    assert record.department == "GENERAL"


async def test_unreadable_upload_falls_back(tmp_path):
    gemini = MagicMock()
    gemini.analyze_complaint_image = AsyncMock()
    service = ComplaintAIService(GeminiConfig(api_key="real-key"), gemini=gemini)

    record = await service.analyze_complaint_image(str(tmp_path / "missing.jpg"), "image/jpeg", "desc")

    gemini.analyze_complaint_image.assert_not_awaited()
    assert record.fallback is True
    assert record.department == "GENERAL"
    assert record.error
