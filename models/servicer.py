"""
Servicer Model
Static per-servicer descriptor read from configuration
"""

from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, Field

ServicerChannelType = Literal["api", "portal", "email", "fax"]


class ServicerConfig(BaseModel):
    id: str
    name: str
    type: ServicerChannelType = "portal"
    adapter: str = "generic"
    endpoint: Optional[str] = None
    credentials: Dict[str, Any] = Field(default_factory=dict)
    requirements: Dict[str, Any] = Field(default_factory=dict)

    def get_requirement(self, key: str, default: Any = None) -> Any:
        """Get a single servicer requirement"""
        return self.requirements.get(key, default)

    def get_credential(self, key: str, default: Any = None) -> Any:
        return self.credentials.get(key, default)
