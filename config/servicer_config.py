"""
Servicer Configuration
Builds ServicerConfig descriptors from the YAML servicer definitions
"""

from typing import Dict, List, Any, Optional

from models.servicer import ServicerConfig
from services.exceptions import ConfigurationError
from .yaml_config import YAMLConfigLoader


class ServicerConfigRegistry:
    """Read-only registry of configured servicers"""

    def __init__(self, yaml_loader: Optional[YAMLConfigLoader] = None):
        self.yaml_loader = yaml_loader or YAMLConfigLoader()

    def get_servicer_config(self, servicer_id: str) -> Optional[ServicerConfig]:
        """Get the descriptor for a configured servicer, or None"""
        definition = self.yaml_loader.get_servicer(servicer_id)
        if not definition:
            return None
        return self._build_config(servicer_id.lower(), definition)

    def get_all_servicer_configs(self) -> List[ServicerConfig]:
        """Get descriptors for every configured servicer"""
        return [
            self._build_config(servicer_id, definition)
            for servicer_id, definition in self.yaml_loader.get_servicers().items()
        ]

    def get_all_servicer_ids(self) -> List[str]:
        return self.yaml_loader.get_all_servicer_ids()

    def is_servicer_configured(self, servicer_id: str) -> bool:
        return bool(servicer_id) and bool(self.yaml_loader.get_servicer(servicer_id))

    def build_generic_config(self, servicer_id: str, extra_requirements: Dict[str, Any] = None) -> ServicerConfig:
        """Build a fallback descriptor for a servicer without a dedicated adapter"""
        defaults = self.yaml_loader.get_generic_defaults()
        requirements = dict(defaults.get("requirements", {}) or {})
        if extra_requirements:
            requirements.update(extra_requirements)

        return ServicerConfig(
            id=servicer_id,
            name=servicer_id,
            type=defaults.get("type", "portal"),
            adapter="generic",
            endpoint=defaults.get("endpoint"),
            credentials=defaults.get("credentials", {}) or {},
            requirements=requirements
        )

    def is_generic_fallback_allowed(self) -> bool:
        return bool(self.yaml_loader.get_generic_defaults().get("allow_fallback", True))

    def _build_config(self, servicer_id: str, definition: Dict[str, Any]) -> ServicerConfig:
        """Validate a YAML definition into a ServicerConfig"""
        try:
            return ServicerConfig(
                id=servicer_id,
                name=definition.get("name", servicer_id),
                type=definition.get("type", "portal"),
                adapter=definition.get("adapter", "generic"),
                endpoint=definition.get("endpoint") or None,
                credentials=definition.get("credentials", {}) or {},
                requirements=definition.get("requirements", {}) or {}
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration for servicer {servicer_id}: {str(e)}")

    def reload_config(self):
        """Reload configuration from YAML file"""
        self.yaml_loader.reload_config()
