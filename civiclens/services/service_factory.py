"""
Lifecycle manager for the AI and location clients.

One `ServiceFactory` is built by the application lifespan and stored on
`app.state`; request handlers reach it through a FastAPI dependency instead of
a module-level singleton.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from civiclens.core.config import ServicesConfig, get_config, is_placeholder_key, validate_config
from civiclens.core.errors import ConfigurationError, ServiceNotInitializedError
from civiclens.services.complaint_ai import ComplaintAIService
from civiclens.services.gemini_service import GeminiService
from civiclens.services.location_service import LocationService
from civiclens.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    SHUTDOWN = "shutdown"


class ServiceFactory:
    def __init__(
        self,
        config_loader: Callable[[], ServicesConfig] = get_config,
        cache: Optional[RedisService] = None,
        gemini_model: Any = None,
    ):
        self._config_loader = config_loader
        self.config: ServicesConfig = config_loader()
        self.cache = cache
        self._gemini_model = gemini_model

        self.state = ServiceState.UNINITIALIZED
        self.gemini_service: Optional[GeminiService] = None
        self.complaint_ai: Optional[ComplaintAIService] = None
        self.location_service: Optional[LocationService] = None
        self.warnings = []

    @property
    def initialized(self) -> bool:
        return self.state == ServiceState.READY

    def gemini_configured(self) -> bool:
        return not is_placeholder_key(self.config.gemini.api_key)

    def geocoding_configured(self) -> bool:
        return not is_placeholder_key(self.config.location.geocoding_api_key)

    async def initialize(self, run_health_check: bool = True) -> Dict[str, Any]:
        """
        Validate configuration and build the clients.

        Missing keys leave the services in a degraded state with warnings.
        Unusable numeric settings raise `ConfigurationError`. The health check
        is informational and never fails startup.
        """
        if self.state == ServiceState.READY:
            return self._init_result(None)

        logger.info("🚀 Initializing AI and Location services...")
        validation = validate_config(self.config)
        if not validation.valid:
            logger.error(f"❌ Service configuration invalid: {validation.errors}")
            raise ConfigurationError(validation.errors)
        for warning in validation.warnings:
            logger.warning(f"⚠️ Service configuration warning: {warning}")
        self.warnings = list(validation.warnings)

        if self.gemini_configured():
            self.gemini_service = GeminiService(self.config.gemini, model=self._gemini_model)
        self.complaint_ai = ComplaintAIService(self.config.gemini, gemini=self.gemini_service)
        self.location_service = LocationService(self.config.location, cache=self.cache)
        self.state = ServiceState.READY

        health = None
        if run_health_check:
            try:
                health = await self.perform_health_check()
            except Exception as e:
                logger.warning(f"⚠️ Startup health check failed: {e}")

        logger.info("✅ Services initialized successfully")
        return self._init_result(health)

    def _init_result(self, health: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "success": True,
            "services": {
                "gemini": self.gemini_service is not None,
                "location": self.location_service is not None,
            },
            "health": health,
            "warnings": list(self.warnings),
        }

    def _require_ready(self):
        if self.state != ServiceState.READY:
            raise ServiceNotInitializedError()

    def get_gemini_service(self) -> Optional[GeminiService]:
        """The raw Gemini client, or None when no key is configured."""
        self._require_ready()
        return self.gemini_service

    def get_complaint_ai(self) -> ComplaintAIService:
        self._require_ready()
        return self.complaint_ai

    def get_location_service(self) -> LocationService:
        self._require_ready()
        return self.location_service

    async def perform_health_check(self) -> Dict[str, Any]:
        health: Dict[str, Any] = {
            "gemini": False,
            "location": {"nominatim": False, "google": False, "ip_geolocation": False},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        # a real Gemini probe would cost a model call; a built client with a key counts as up
        health["gemini"] = self.gemini_service is not None and self.gemini_configured()

        if self.location_service is not None:
            try:
                health["location"] = await self.location_service.get_service_health()
            except Exception as e:
                logger.warning(f"⚠️ Location service health check failed: {e}")
        return health

    def get_service_stats(self) -> Dict[str, Any]:
        gemini = self.config.gemini
        location = self.config.location
        return {
            "state": self.state.value,
            "initialized": self.initialized,
            "services": {
                "gemini": {
                    "available": self.gemini_service is not None,
                    "model": gemini.model,
                    "timeout_ms": gemini.timeout_ms,
                    "max_retries": gemini.max_retries,
                },
                "location": {
                    "available": self.location_service is not None,
                    "timeout_ms": location.timeout_ms,
                    "max_retries": location.max_retries,
                    "providers": ["nominatim", "google", "ip_geolocation"],
                    "cache": self.cache is not None and self.cache.is_connected,
                },
            },
            "config": {
                "gemini_configured": self.gemini_configured(),
                "geocoding_configured": self.geocoding_configured(),
            },
        }

    async def restart(self, run_health_check: bool = True) -> Dict[str, Any]:
        logger.info("🔄 Restarting services...")
        await self.shutdown()
        self.config = self._config_loader()
        self.state = ServiceState.UNINITIALIZED
        return await self.initialize(run_health_check=run_health_check)

    async def shutdown(self):
        """Drop the clients. Safe to call repeatedly."""
        if self.state in (ServiceState.SHUTTING_DOWN, ServiceState.SHUTDOWN):
            return
        logger.info("🛑 Shutting down services...")
        self.state = ServiceState.SHUTTING_DOWN
        location = self.location_service
        self.gemini_service = None
        self.complaint_ai = None
        self.location_service = None
        if location is not None:
            try:
                await location.close()
            except Exception as e:
                logger.warning(f"⚠️ Error closing location service: {e}")
        self.state = ServiceState.SHUTDOWN
        logger.info("✅ Services shut down successfully")
