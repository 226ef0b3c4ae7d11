"""
Gemini vision client for complaint photos.

Builds a structured-output prompt, submits image + prompt through the retrying
caller and turns the free-form model reply into a validated `AIRecord`.
Every public method absorbs failures into a degraded-but-valid result.
"""

import json
import logging
import math
import time
from typing import Any, Dict, List, Optional, Union

import google.generativeai as genai

from civiclens.core.config import GeminiConfig
from civiclens.models.complaint_model import (
    CATEGORIES,
    PRIORITY_LADDER,
    AIMetadata,
    AIRecord,
    Confidence,
    Priority,
)
from civiclens.utils.departments import DEFAULT_DEPARTMENT, DEPARTMENTS, department_for_category
from civiclens.utils.image_utils import DEFAULT_MIME, downscale_image, split_data_uri
from civiclens.utils.retry import execute_with_retry

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DESCRIPTION_CONFIDENCE = 0.8

ImageInput = Union[str, bytes]


def extract_json_block(text: str) -> Optional[str]:
    """
    Return the first balanced `{...}` block in `text`, or None.

    Braces inside JSON string literals are ignored so prose around the object
    and nested objects are both handled.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def validate_category(category: Any) -> str:
    if isinstance(category, str):
        wanted = category.strip().lower()
        for valid in CATEGORIES:
            if valid.lower() == wanted:
                return valid
    return "Other"


def validate_priority(priority: Any) -> str:
    if isinstance(priority, str):
        wanted = priority.strip().lower()
        for valid in PRIORITY_LADDER:
            if valid.lower() == wanted:
                return valid
    return Priority.MEDIUM.value


def clamp_confidence(value: Any, default: float = DEFAULT_CONFIDENCE) -> float:
    """Clamp a model-reported confidence into [0, 1]; absent or junk values get `default`."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(max(number, 0.0), 1.0)


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _coerce_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        text = str(value).strip()
        return [text] if text else []
    return [str(item).strip() for item in value if str(item).strip()]


def coerce_metadata(raw: Any) -> AIMetadata:
    if not isinstance(raw, dict):
        return AIMetadata()
    extras = {k: v for k, v in raw.items() if k not in ("detectedObjects", "sceneDescription", "issueType")}
    scene = raw.get("sceneDescription")
    issue_type = raw.get("issueType")
    return AIMetadata(
        detectedObjects=_coerce_str_list(raw.get("detectedObjects")),
        sceneDescription=_coerce_text(scene) or None,
        issueType=_coerce_text(issue_type) or None,
        **extras,
    )


def _confidence_block(parsed: Dict[str, Any], fields: List[str]) -> Dict[str, float]:
    raw = parsed.get("confidence")
    if not isinstance(raw, dict):
        raw = {}
    return {field: clamp_confidence(raw.get(field)) for field in fields}


def _raw_department(parsed: Dict[str, Any], category: str) -> str:
    department = parsed.get("department")
    if isinstance(department, str) and department.strip():
        return department.strip()
    return department_for_category(category)


class GeminiService:
    """Vision analysis client wrapping a Gemini multimodal model."""

    def __init__(self, config: Optional[GeminiConfig] = None, model: Any = None):
        self.config = config or GeminiConfig()
        self.model_name = self.config.model
        self.max_retries = self.config.max_retries
        self.base_delay_ms = self.config.base_delay_ms
        self.timeout_ms = self.config.timeout_ms

        if model is None:
            if self.config.api_key:
                genai.configure(api_key=self.config.api_key)
            model = genai.GenerativeModel(self.model_name)
        self.model = model

    # --- public operations ---

    async def analyze_complaint_image(
        self,
        image: ImageInput,
        user_description: str = "",
        mime_type: Optional[str] = None,
    ) -> AIRecord:
        """
        Describe and classify a complaint photo.

        Never raises: call failures return the fallback record and an
        unparseable reply returns the zero-confidence default analysis.
        """
        start = time.perf_counter()
        try:
            prompt = self.build_analysis_prompt(user_description)
            image_part = self.prepare_image_part(image, mime_type)
            text = await self._generate_text([prompt, image_part], label="Gemini analysis")
            record = self.parse_analysis_response(text)
        except Exception as e:
            logger.error(f"❌ Gemini AI analysis failed: {e}")
            return self.get_fallback_response(self._elapsed_ms(start), str(e))

        record.processing_time_ms = self._elapsed_ms(start)
        record.ai_service_version = self.model_name
        logger.info(
            f"🤖 Gemini classified complaint as {record.category}/{record.priority} "
            f"in {record.processing_time_ms}ms (fallback={record.fallback})"
        )
        return record

    async def generate_description(self, image: ImageInput, mime_type: Optional[str] = None) -> Dict[str, Any]:
        start = time.perf_counter()
        prompt = (
            "Analyze this image of a civic issue and provide a clear, detailed description of what you see. "
            "Focus on the specific problem, location details, and any relevant context that would help "
            "municipal authorities understand and address the issue. "
            "Respond with only the description text, no additional formatting."
        )
        try:
            image_part = self.prepare_image_part(image, mime_type)
            text = await self._generate_text([prompt, image_part], label="Gemini description")
            return {
                "description": (text or "").strip(),
                "confidence": DESCRIPTION_CONFIDENCE,
                "processing_time_ms": self._elapsed_ms(start),
            }
        except Exception as e:
            logger.error(f"❌ Description generation failed: {e}")
            return {
                "description": "",
                "confidence": 0.0,
                "processing_time_ms": self._elapsed_ms(start),
                "error": str(e),
            }

    async def categorize_complaint(
        self,
        description: str,
        image: ImageInput,
        mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            prompt = self.build_categorization_prompt(description)
            image_part = self.prepare_image_part(image, mime_type)
            text = await self._generate_text([prompt, image_part], label="Gemini categorization")
            result = self.parse_categorization_response(text)
        except Exception as e:
            logger.error(f"❌ Categorization failed: {e}")
            result = self._default_categorization()
            result["error"] = str(e)
        result["processing_time_ms"] = self._elapsed_ms(start)
        return result

    # --- prompt building ---

    def build_analysis_prompt(self, user_description: str = "") -> str:
        context = f"Additional context from user: {user_description}" if user_description else ""
        return f"""Analyze this image of a civic complaint and provide a comprehensive analysis in the following JSON format:
{{
  "description": "Detailed description of the issue visible in the image",
  "title": "Brief title summarizing the issue",
  "category": "One of: {', '.join(CATEGORIES)}",
  "priority": "One of: {', '.join(PRIORITY_LADDER)}",
  "department": "One of: {', '.join(DEPARTMENTS)}",
  "confidence": {{
    "description": 0.0-1.0,
    "category": 0.0-1.0,
    "priority": 0.0-1.0
  }},
  "metadata": {{
    "detectedObjects": ["list", "of", "objects"],
    "sceneDescription": "Overall scene description",
    "issueType": "Type of civic issue identified"
  }}
}}

{context}

Guidelines:
- Be specific and factual in descriptions
- Consider severity when assigning priority
- Use confidence scores to indicate certainty
- Respond with valid JSON only"""

    def build_categorization_prompt(self, description: str) -> str:
        return f"""Based on this complaint description and image, categorize the issue:

Description: {description}

Respond in JSON format:
{{
  "category": "One of: {', '.join(CATEGORIES)}",
  "department": "One of: {', '.join(DEPARTMENTS)}",
  "priority": "One of: {', '.join(PRIORITY_LADDER)}",
  "confidence": {{
    "category": 0.0-1.0,
    "priority": 0.0-1.0
  }}
}}

Department mapping hints:
- Roads/holes/potholes -> ROAD_INFRASTRUCTURE
- Streetlights/electrical -> STREETLIGHT_ELECTRICAL
- Garbage/waste -> WASTE_MANAGEMENT
- Water/leak/sewer -> WATER_SEWERAGE
- Sanitation/health/hygiene -> SANITATION_PUBLIC_HEALTH
- Parks/greenery/trees -> PARKS_GARDENS
- Encroachment/illegal stall -> ENCROACHMENT
- Traffic signs/signals -> TRAFFIC_SIGNAGE
- Otherwise -> GENERAL"""

    def prepare_image_part(self, image: ImageInput, mime_type: Optional[str] = None) -> Dict[str, Any]:
        """Inline image part for the Gemini SDK from a data URI or raw bytes."""
        if isinstance(image, str):
            data, detected = split_data_uri(image)
            mime_type = mime_type or detected
        else:
            data = bytes(image)
        data, new_mime = downscale_image(data, self.config.max_image_bytes)
        return {"mime_type": new_mime or mime_type or DEFAULT_MIME, "data": data}

    # --- response parsing ---

    def parse_analysis_response(self, text: str) -> AIRecord:
        parsed = self._load_json(text)
        if parsed is None:
            return self.get_default_analysis()

        category = validate_category(parsed.get("category"))
        confidence = _confidence_block(parsed, ["description", "category", "priority"])
        return AIRecord(
            description=_coerce_text(parsed.get("description")),
            title=_coerce_text(parsed.get("title")),
            category=category,
            priority=validate_priority(parsed.get("priority")),
            department=_raw_department(parsed, category),
            confidence=Confidence(**confidence),
            metadata=coerce_metadata(parsed.get("metadata")),
            fallback=False,
        )

    def parse_categorization_response(self, text: str) -> Dict[str, Any]:
        parsed = self._load_json(text)
        if parsed is None:
            return self._default_categorization()
        category = validate_category(parsed.get("category"))
        return {
            "category": category,
            "department": _raw_department(parsed, category),
            "priority": validate_priority(parsed.get("priority")),
            "confidence": _confidence_block(parsed, ["category", "priority"]),
        }

    def _load_json(self, text: str) -> Optional[Dict[str, Any]]:
        block = extract_json_block(text or "")
        if block is None:
            logger.warning("⚠️ No JSON found in Gemini response")
            return None
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError as e:
            logger.warning(f"⚠️ Failed to parse Gemini response JSON: {e}")
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    # --- fallbacks ---

    def get_default_analysis(self) -> AIRecord:
        defaults = self.config.defaults
        return AIRecord(
            category=defaults.category,
            priority=defaults.priority,
            department=defaults.department,
            confidence=Confidence(**defaults.confidence.model_dump()),
            fallback=True,
        )

    def get_fallback_response(self, processing_time_ms: int, error_message: str) -> AIRecord:
        record = self.get_default_analysis()
        record.processing_time_ms = processing_time_ms
        record.ai_service_version = self.model_name
        record.error = error_message
        return record

    def _default_categorization(self) -> Dict[str, Any]:
        return {
            "category": "Other",
            "department": DEFAULT_DEPARTMENT,
            "priority": Priority.MEDIUM.value,
            "confidence": {"category": 0.0, "priority": 0.0},
        }

    # --- model call ---

    async def _generate_text(self, parts: List[Any], label: str) -> str:
        async def _call() -> str:
            response = await self.model.generate_content_async(
                parts,
                request_options={"timeout": self.timeout_ms / 1000.0},
            )
            return response.text

        return await execute_with_retry(
            _call,
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            timeout_ms=self.timeout_ms,
            label=label,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return max(1, int((time.perf_counter() - start) * 1000))
