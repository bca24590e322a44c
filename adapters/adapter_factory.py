"""
Servicer Adapter Factory
Resolves servicer ids to adapters, falling back to the generic adapter for unknown servicers
"""

from typing import Dict, List, Optional, Type

from config.servicer_config import ServicerConfigRegistry
from models.servicer import ServicerConfig
from models.submission_result import ConnectionTestResult
from services.email_service import EmailService
from services.exceptions import ConfigurationError, UnknownServicerError
from utils.logger import get_logger
from .base_adapter import ServicerAdapter
from .bofa_adapter import BofAAdapter
from .chase_adapter import ChaseAdapter
from .generic_adapter import GenericAdapter
from .wells_fargo_adapter import WellsFargoAdapter

logger = get_logger(__name__)

# Keyed by the `adapter` field of a servicer definition
ADAPTER_CLASSES: Dict[str, Type[ServicerAdapter]] = {
    "chase": ChaseAdapter,
    "bofa": BofAAdapter,
    "wells_fargo": WellsFargoAdapter,
    "generic": GenericAdapter
}


class ServicerAdapterFactory:
    """
    Registry of servicer adapters.

    To add a servicer:
    1. Implement a ServicerAdapter subclass
    2. Register its class here (or via register_adapter_class)
    3. Add the servicer to config/servicers.yaml naming that adapter
    """

    def __init__(
        self,
        servicer_registry: Optional[ServicerConfigRegistry] = None,
        intelligence_service=None,
        email_service: Optional[EmailService] = None
    ):
        self.servicer_registry = servicer_registry or ServicerConfigRegistry()
        self.intelligence_service = intelligence_service
        self.email_service = email_service or EmailService()
        self.adapter_classes: Dict[str, Type[ServicerAdapter]] = dict(ADAPTER_CLASSES)
        self.adapters: Dict[str, ServicerAdapter] = {}
        self._register_adapters()

    def _register_adapters(self):
        for config in self.servicer_registry.get_all_servicer_configs():
            adapter_class = self.adapter_classes.get(config.adapter)
            if adapter_class is None:
                raise ConfigurationError(
                    f"Servicer {config.id} names unregistered adapter '{config.adapter}'"
                )
            self.adapters[config.id.lower()] = self._build_adapter(adapter_class, config)

        logger.info(f"Registered servicer adapters: {', '.join(self.adapters)}")

    def _build_adapter(self, adapter_class: Type[ServicerAdapter], config: ServicerConfig) -> ServicerAdapter:
        return adapter_class(
            config,
            email_service=self.email_service,
            intelligence_service=self.intelligence_service
        )

    async def get_adapter(self, servicer_id: str) -> ServicerAdapter:
        """
        Get the adapter for a servicer

        Raises:
            UnknownServicerError: empty id, or unknown id with the generic fallback disabled
        """
        if not servicer_id or not servicer_id.strip():
            raise UnknownServicerError("Servicer id is required", servicer_id)

        key = servicer_id.strip().lower()
        adapter = self.adapters.get(key)
        if adapter:
            logger.debug(f"Using specific adapter for {servicer_id}")
            return adapter

        if not self.servicer_registry.is_generic_fallback_allowed():
            raise UnknownServicerError(f"No adapter registered for servicer {servicer_id}", servicer_id)

        logger.info(f"No specific adapter for {servicer_id}, using generic adapter with intelligence")

        learned = {}
        if self.intelligence_service is not None:
            try:
                learned = {
                    "recommendations": await self.intelligence_service.get_recommendations(key),
                    "success_rate": await self.intelligence_service.get_success_rate(key),
                    "learned": True
                }
            except Exception as e:
                logger.error(f"Failed to load intelligence for {servicer_id}: {str(e)}")
                learned = {}

        config = self.servicer_registry.build_generic_config(key, learned)
        return self._build_adapter(GenericAdapter, config)

    def has_adapter(self, servicer_id: str) -> bool:
        return bool(servicer_id) and servicer_id.strip().lower() in self.adapters

    def get_registered_servicers(self) -> List[str]:
        return list(self.adapters)

    def register_adapter(self, servicer_id: str, adapter: ServicerAdapter):
        """Register an adapter instance at runtime"""
        self.adapters[servicer_id.lower()] = adapter
        logger.info(f"Registered new adapter for {servicer_id}")

    def register_adapter_class(self, name: str, adapter_class: Type[ServicerAdapter]):
        """Make an adapter class available to servicer definitions"""
        self.adapter_classes[name] = adapter_class

    def get_servicer_config(self, servicer_id: str) -> Optional[ServicerConfig]:
        adapter = self.adapters.get((servicer_id or "").lower())
        if adapter:
            return adapter.get_config()
        return None

    async def test_adapter(self, servicer_id: str) -> ConnectionTestResult:
        """Run a servicer's connection test"""
        try:
            adapter = await self.get_adapter(servicer_id)
            return await adapter.test_connection()
        except Exception as e:
            logger.error(f"Connection test for {servicer_id} failed: {str(e)}")
            return ConnectionTestResult(success=False, message=str(e))
