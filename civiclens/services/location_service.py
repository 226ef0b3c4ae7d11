"""
Reverse geocoding for complaint locations.

Providers are tried in a fixed order: OpenStreetMap Nominatim first, then
Google Geocoding when a key is configured. Each provider call goes through the
retrying caller; if every provider fails the caller still gets a
coordinates-only record, never an exception.
"""

import logging
import math
import time
from typing import Any, Dict, List, Optional

import aiohttp

from civiclens.core.config import LocationConfig, is_placeholder_key
from civiclens.services.redis_service import RedisService
from civiclens.utils.retry import execute_with_retry

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_S = 5
IP_FIELDS = "status,message,country,regionName,city,lat,lon,timezone"

_GOOGLE_COMPONENT_TYPES = [
    "street_number",
    "route",
    "locality",
    "sublocality",
    "administrative_area_level_1",
    "postal_code",
    "country",
    "establishment",
    "point_of_interest",
]


def validate_coordinates(latitude: Any, longitude: Any) -> bool:
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        return False
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        return False
    if math.isnan(latitude) or math.isnan(longitude):
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def extract_street_address(addr: Dict[str, Any]) -> Optional[str]:
    parts = []
    if addr.get("house_number"):
        parts.append(str(addr["house_number"]))
    if addr.get("road"):
        parts.append(addr["road"])
    elif addr.get("pedestrian"):
        parts.append(addr["pedestrian"])
    elif addr.get("footway"):
        parts.append(addr["footway"])
    return " ".join(parts) or addr.get("neighbourhood") or addr.get("suburb")


def parse_google_components(components: List[Dict[str, Any]]) -> Dict[str, str]:
    """Flatten Google `address_components` into a type -> long_name map (first matching type wins)."""
    parsed: Dict[str, str] = {}
    for component in components or []:
        types = component.get("types") or []
        for kind in _GOOGLE_COMPONENT_TYPES:
            if kind in types:
                parsed.setdefault(kind, component.get("long_name"))
                break
    return parsed


def format_address(components: Dict[str, Any]) -> str:
    keys = ["street", "city", "state", "pincode", "country"]
    return ", ".join(str(components[k]) for k in keys if components.get(k))


class LocationService:
    def __init__(
        self,
        config: Optional[LocationConfig] = None,
        cache: Optional[RedisService] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or LocationConfig()
        self.cache = cache
        self._session = session
        self._owns_session = session is None

    @property
    def geocoding_api_key(self) -> Optional[str]:
        key = self.config.geocoding_api_key
        return None if is_placeholder_key(key) else key

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self.config.user_agent})
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> Dict[str, Any]:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_s or self.config.timeout_ms / 1000.0)
        async with session.get(url, params=params, timeout=timeout) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def _with_retry(self, operation, label: str):
        return await execute_with_retry(
            operation,
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.base_delay_ms,
            timeout_ms=self.config.timeout_ms,
            label=label,
        )

    # --- providers ---

    async def call_nominatim(self, latitude: float, longitude: float) -> Dict[str, Any]:
        data = await self._get_json(
            self.config.nominatim_url,
            params={
                "format": "json",
                "lat": latitude,
                "lon": longitude,
                "addressdetails": 1,
                "zoom": 18,
            },
        )
        addr = (data or {}).get("address")
        if not addr:
            raise ValueError("No address data returned from Nominatim")
        return {
            "address": {
                "formatted": data.get("display_name"),
                "components": {
                    "street": extract_street_address(addr),
                    "city": addr.get("city") or addr.get("town") or addr.get("village") or addr.get("municipality"),
                    "state": addr.get("state") or addr.get("region"),
                    "pincode": addr.get("postcode"),
                    "country": addr.get("country"),
                    "landmark": addr.get("amenity") or addr.get("building"),
                },
            },
            "source": "nominatim",
            "accuracy": "high",
        }

    async def call_google(self, latitude: float, longitude: float) -> Dict[str, Any]:
        data = await self._get_json(
            self.config.google_url,
            params={
                "latlng": f"{latitude},{longitude}",
                "key": self.geocoding_api_key,
                "result_type": "street_address|route|neighborhood|locality",
            },
        )
        status = (data or {}).get("status")
        results = (data or {}).get("results") or []
        if status != "OK" or not results:
            raise ValueError(f"Google Geocoding failed: {status}")

        first = results[0]
        parsed = parse_google_components(first.get("address_components"))
        if parsed.get("street_number") and parsed.get("route"):
            street = f"{parsed['street_number']} {parsed['route']}"
        else:
            street = parsed.get("route")
        return {
            "address": {
                "formatted": first.get("formatted_address"),
                "components": {
                    "street": street,
                    "city": parsed.get("locality") or parsed.get("sublocality"),
                    "state": parsed.get("administrative_area_level_1"),
                    "pincode": parsed.get("postal_code"),
                    "country": parsed.get("country"),
                    "landmark": parsed.get("establishment") or parsed.get("point_of_interest"),
                },
            },
            "source": "google",
            "accuracy": "high",
        }

    # --- public operations ---

    async def reverse_geocode(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """Resolve coordinates to an address, falling back to a coordinates-only record."""
        start = time.perf_counter()
        if not validate_coordinates(latitude, longitude):
            return self.get_fallback_response(latitude, longitude, self._elapsed_ms(start), "Invalid coordinates provided")

        if self.cache is not None:
            cached = await self.cache.get_cached_reverse_geocode(latitude, longitude)
            if cached:
                cached["cached"] = True
                return cached

        providers = [
            ("OpenStreetMap Nominatim", self.call_nominatim, False),
            ("Google Geocoding", self.call_google, True),
        ]

        result = None
        last_error: Optional[Exception] = None
        for name, call, requires_key in providers:
            if requires_key and not self.geocoding_api_key:
                continue
            try:
                result = await self._with_retry(lambda call=call: call(latitude, longitude), label=name)
                break
            except Exception as e:
                last_error = e
                logger.warning(f"⚠️ Geocoding service {name} failed: {e}")

        if result is None:
            message = str(last_error) if last_error else "All geocoding services failed"
            logger.error(f"❌ Reverse geocoding failed for ({latitude}, {longitude}): {message}")
            return self.get_fallback_response(latitude, longitude, self._elapsed_ms(start), message)

        result["coordinates"] = {"latitude": latitude, "longitude": longitude}
        result["processing_time_ms"] = self._elapsed_ms(start)
        if self.cache is not None:
            await self.cache.cache_reverse_geocode(latitude, longitude, result, self.config.cache_ttl_s)
        return result

    async def get_location_from_ip(self, ip_address: str) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            data = await self._get_json(
                f"{self.config.ip_geolocation_url}/{ip_address}",
                params={"fields": IP_FIELDS},
            )
            if data.get("status") != "success":
                raise ValueError(data.get("message") or "IP geolocation failed")
            return {
                "address": {
                    "formatted": f"{data.get('city')}, {data.get('regionName')}, {data.get('country')}",
                    "components": {
                        "city": data.get("city"),
                        "state": data.get("regionName"),
                        "country": data.get("country"),
                    },
                },
                "coordinates": {"latitude": data.get("lat"), "longitude": data.get("lon")},
                "processing_time_ms": self._elapsed_ms(start),
                "source": "ip-geolocation",
                "accuracy": "approximate",
            }
        except Exception as e:
            logger.error(f"❌ IP geolocation failed for {ip_address}: {e}")
            return {
                "address": {"formatted": "Location unavailable", "components": {}},
                "coordinates": None,
                "processing_time_ms": self._elapsed_ms(start),
                "error": str(e),
                "source": "fallback",
            }

    def get_fallback_response(
        self,
        latitude: Any,
        longitude: Any,
        processing_time_ms: int,
        error_message: str,
    ) -> Dict[str, Any]:
        return {
            "address": {
                "formatted": f"Coordinates: {latitude}, {longitude}",
                "components": {"coordinates": f"{latitude}, {longitude}"},
            },
            "coordinates": {"latitude": latitude, "longitude": longitude},
            "processing_time_ms": processing_time_ms,
            "source": "fallback",
            "accuracy": "coordinates-only",
            "error": error_message,
            "fallback": True,
        }

    def format_address(self, components: Dict[str, Any]) -> str:
        return format_address(components)

    async def get_service_health(self) -> Dict[str, bool]:
        """Probe each provider once with a short timeout."""
        health = {"nominatim": False, "google": False, "ip_geolocation": False}

        try:
            await self._get_json(
                self.config.nominatim_url,
                params={"format": "json", "lat": 0, "lon": 0},
                timeout_s=HEALTH_CHECK_TIMEOUT_S,
            )
            health["nominatim"] = True
        except Exception as e:
            logger.warning(f"⚠️ Nominatim health check failed: {e}")

        if self.geocoding_api_key:
            try:
                await self._get_json(
                    self.config.google_url,
                    params={"latlng": "0,0", "key": self.geocoding_api_key},
                    timeout_s=HEALTH_CHECK_TIMEOUT_S,
                )
                health["google"] = True
            except Exception as e:
                logger.warning(f"⚠️ Google Geocoding health check failed: {e}")

        try:
            await self._get_json(f"{self.config.ip_geolocation_url}/8.8.8.8", timeout_s=HEALTH_CHECK_TIMEOUT_S)
            health["ip_geolocation"] = True
        except Exception as e:
            logger.warning(f"⚠️ IP geolocation health check failed: {e}")

        return health

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
