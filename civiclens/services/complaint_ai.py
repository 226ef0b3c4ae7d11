import logging
from typing import Optional

from civiclens.core.config import GeminiConfig, is_placeholder_key
from civiclens.models.complaint_model import AIRecord
from civiclens.services.gemini_service import GeminiService
from civiclens.utils.departments import normalize_department
from civiclens.utils.image_utils import file_to_data_url

logger = logging.getLogger(__name__)


class ComplaintAIService:
    """
    Produces the classification stored on every new complaint.

    Without a usable Gemini key no request is made and the fallback record is
    returned straight away. Whatever path is taken, `department` comes back as
    one of the nine department codes.
    """

    def __init__(self, config: GeminiConfig, gemini: Optional[GeminiService] = None):
        self.config = config
        self.gemini = gemini
        if self.gemini is None and self.is_gemini_configured():
            self.gemini = GeminiService(config)

    def is_gemini_configured(self) -> bool:
        return not is_placeholder_key(self.config.api_key)

    def build_fallback(self, user_description: str = "", error: Optional[str] = None) -> AIRecord:
        defaults = self.config.defaults
        return AIRecord(
            description=(user_description or "").strip(),
            title="",
            category=defaults.category,
            priority=defaults.priority,
            department=normalize_department(defaults.department),
            confidence=defaults.confidence.model_dump(),
            processing_time_ms=0,
            ai_service_version="fallback",
            fallback=True,
            error=error,
        )

    async def analyze_complaint_image(
        self,
        file_path: str,
        mime_type: Optional[str] = None,
        user_description: str = "",
    ) -> AIRecord:
        if not self.is_gemini_configured() or self.gemini is None:
            logger.info("🔧 Gemini not configured - using fallback classification")
            return self.build_fallback(user_description)

        try:
            data_url = await file_to_data_url(file_path, mime_type)
            record = await self.gemini.analyze_complaint_image(data_url, user_description, mime_type)
        except Exception as e:
            logger.error(f"❌ Complaint AI analysis failed: {e}", exc_info=True)
            return self.build_fallback(user_description, error=str(e))

        record.department = normalize_department(record.department)
        return record
