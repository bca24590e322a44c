"""
YAML Configuration Loader
Loads servicer and submission configuration from YAML files
"""

import os
import re
import yaml
from typing import Dict, List, Any, Optional
from pathlib import Path

from services.exceptions import ConfigurationError

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class YAMLConfigLoader:
    """Loads configuration from YAML files"""

    def __init__(self, servicers_file: str = "servicers.yaml", submission_file: str = "submission.yaml",
                 config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path(__file__).parent
        self.servicers_path = self.config_dir / servicers_file
        self.submission_path = self.config_dir / submission_file
        self._servicers_config = None
        self._submission_config = None
        self._load_servicers()
        self._load_submission()

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        """Read a YAML file and expand ${VAR:-default} references"""
        try:
            with open(path, 'r', encoding='utf-8') as file:
                raw = file.read()
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML configuration {path.name}: {str(e)}")

        return self._expand_env(data)

    def _expand_env(self, value: Any) -> Any:
        """Recursively substitute environment variables in string values"""
        if isinstance(value, dict):
            return {key: self._expand_env(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._expand_env(item) for item in value]
        if isinstance(value, str):
            return ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)
        return value

    def _load_servicers(self):
        """Load servicer definitions"""
        self._servicers_config = self._read_yaml(self.servicers_path)

    def _load_submission(self):
        """Load orchestration settings. Missing file means code defaults apply."""
        try:
            self._submission_config = self._read_yaml(self.submission_path)
        except ConfigurationError:
            if self.submission_path.exists():
                raise
            self._submission_config = {}

    def get_servicers(self) -> Dict[str, Dict[str, Any]]:
        """Get servicer definitions keyed by servicer id"""
        return self._servicers_config.get("servicers", {}) or {}

    def get_servicer(self, servicer_id: str) -> Dict[str, Any]:
        """Get the definition of a single servicer"""
        return self.get_servicers().get(servicer_id.lower(), {})

    def get_generic_defaults(self) -> Dict[str, Any]:
        """Get defaults for servicers without a dedicated adapter"""
        return self._servicers_config.get("generic", {}) or {}

    def get_all_servicer_ids(self) -> List[str]:
        """Get ids of all configured servicers"""
        return list(self.get_servicers().keys())

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get a top-level section of the submission settings"""
        return self._submission_config.get(section, {}) or {}

    def get_setting(self, section: str, setting_name: str, default_value: Any = None) -> Any:
        """Get a single submission setting"""
        return self.get_section(section).get(setting_name, default_value)

    def reload_config(self):
        """Reload configuration from files"""
        self._load_servicers()
        self._load_submission()
