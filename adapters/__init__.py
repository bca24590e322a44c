"""
Servicer Adapters
Per-servicer validation, payload shaping and delivery
"""

from .base_adapter import ServicerAdapter
from .chase_adapter import ChaseAdapter
from .bofa_adapter import BofAAdapter
from .wells_fargo_adapter import WellsFargoAdapter
from .generic_adapter import GenericAdapter
from .adapter_factory import ServicerAdapterFactory, ADAPTER_CLASSES

__all__ = [
    "ServicerAdapter",
    "ChaseAdapter",
    "BofAAdapter",
    "WellsFargoAdapter",
    "GenericAdapter",
    "ServicerAdapterFactory",
    "ADAPTER_CLASSES"
]
