import re
from typing import Any, Optional

DEPARTMENTS = [
    "WASTE_MANAGEMENT",
    "ROAD_INFRASTRUCTURE",
    "STREETLIGHT_ELECTRICAL",
    "WATER_SEWERAGE",
    "SANITATION_PUBLIC_HEALTH",
    "PARKS_GARDENS",
    "ENCROACHMENT",
    "TRAFFIC_SIGNAGE",
    "GENERAL",
]

DEFAULT_DEPARTMENT = "GENERAL"

DEPARTMENT_ALIASES = {
    "WASTE": "WASTE_MANAGEMENT",
    "GARBAGE": "WASTE_MANAGEMENT",
    "ROAD": "ROAD_INFRASTRUCTURE",
    "ROADS": "ROAD_INFRASTRUCTURE",
    "STREETLIGHT": "STREETLIGHT_ELECTRICAL",
    "STREETLIGHTS": "STREETLIGHT_ELECTRICAL",
    "ELECTRICITY": "STREETLIGHT_ELECTRICAL",
    "ELECTRICAL": "STREETLIGHT_ELECTRICAL",
    "WATER": "WATER_SEWERAGE",
    "SEWER": "WATER_SEWERAGE",
    "SEWERAGE": "WATER_SEWERAGE",
    "LEAK": "WATER_SEWERAGE",
    "SANITATION": "SANITATION_PUBLIC_HEALTH",
    "HEALTH": "SANITATION_PUBLIC_HEALTH",
    "HYGIENE": "SANITATION_PUBLIC_HEALTH",
    "PARK": "PARKS_GARDENS",
    "PARKS": "PARKS_GARDENS",
    "GARDEN": "PARKS_GARDENS",
    "GARDENS": "PARKS_GARDENS",
    "ENCROACH": "ENCROACHMENT",
    "TRAFFIC": "TRAFFIC_SIGNAGE",
    "SIGNAGE": "TRAFFIC_SIGNAGE",
    "SIGNAL": "TRAFFIC_SIGNAGE",
    "SIGNALS": "TRAFFIC_SIGNAGE",
}

CATEGORY_DEPARTMENTS = {
    "roads": "ROAD_INFRASTRUCTURE",
    "sanitation": "SANITATION_PUBLIC_HEALTH",
    "water": "WATER_SEWERAGE",
    "electricity": "STREETLIGHT_ELECTRICAL",
    "streetlights": "STREETLIGHT_ELECTRICAL",
    "garbage": "WASTE_MANAGEMENT",
    "other": "GENERAL",
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def _canonical_token(value: Any) -> str:
    return _NON_ALNUM.sub("_", str(value).strip().upper()).strip("_")


def normalize_department(department: Optional[Any]) -> str:
    """
    Map free text (user input or model output) onto one of the nine department codes.

    Always returns a member of DEPARTMENTS; unknown or empty input maps to GENERAL.
    """
    if department is None:
        return DEFAULT_DEPARTMENT
    token = _canonical_token(department)
    if token in DEPARTMENT_ALIASES:
        return DEPARTMENT_ALIASES[token]
    if token in DEPARTMENTS:
        return token
    return DEFAULT_DEPARTMENT


def department_for_category(category: Optional[str]) -> str:
    key = (category or "").strip().lower()
    return CATEGORY_DEPARTMENTS.get(key, DEFAULT_DEPARTMENT)
