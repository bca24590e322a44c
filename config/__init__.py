"""
Configuration modules for the submission engine
"""

from .yaml_config import YAMLConfigLoader
from .servicer_config import ServicerConfigRegistry
from .submission_config import SubmissionConfig

__all__ = [
    "YAMLConfigLoader",
    "ServicerConfigRegistry",
    "SubmissionConfig"
]
