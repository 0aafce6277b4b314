"""Simple YAML configuration loader for careaudio."""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CaptureSettings(BaseModel):
    """Capture session tuning, from the `audio` and `capture` sections."""
    sample_rate: int = Field(16000, gt=0)
    channels: int = Field(1, ge=1, le=2)
    frames_per_buffer: int = Field(1024, gt=0)
    device_index: Optional[int] = None
    min_duration_seconds: int = Field(2, ge=0)
    timeslice_ms: int = Field(500, gt=0)
    flush_grace_seconds: float = Field(0.3, ge=0)
    finalize_timeout_seconds: float = Field(5.0, gt=0)
    track_health_check: bool = True
    playback_profile: Literal["auto", "restricted", "general"] = "auto"
    user_agent: str = ""


class UploadSettings(BaseModel):
    """Upload manager limits and object naming, from the `upload` section."""
    max_bytes: int = Field(10 * 1024 * 1024, gt=0)
    timeout_seconds: float = Field(30.0, gt=0)
    path_prefix: str = "interventions"
    file_prefix: str = "intervention"
    spool_failed: bool = True


class SupabaseSettings(BaseModel):
    """Supabase project, bucket and parent table, from the `supabase` section."""
    url: str = ""
    api_key: Optional[str] = None
    api_key_env: str = "SUPABASE_KEY"
    access_token: Optional[str] = None
    bucket: str = "intervention-audios"
    table: str = "intervention_reports"
    column: str = "audio_url"
    key_column: str = "id"


class CareAudioConfig:
    """careaudio configuration loader."""

    def __init__(self, config_path: str):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file
        """
        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    @classmethod
    def from_dict(cls, config: Dict[str, Any], base_dir: str = ".") -> "CareAudioConfig":
        """Build a configuration from an in-memory mapping (paths relative to base_dir)."""
        instance = cls.__new__(cls)
        instance.config_file = Path(base_dir) / "careaudio.yaml"
        instance.config = copy.deepcopy(config)
        instance._resolve_paths(instance.config)
        return instance

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not config:
            raise ValueError("Configuration file is empty")

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        for section, key in (('storage', 'data_directory'), ('logging', 'file_path')):
            if section in config and key in config[section]:
                path = config[section][key]
                if not os.path.isabs(path):
                    config[section][key] = str(config_dir / path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'upload.max_bytes').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'capture.min_duration_seconds')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def capture_settings(self) -> CaptureSettings:
        values = dict(self.get('audio', {}) or {})
        values.update(self.get('capture', {}) or {})
        return CaptureSettings(**values)

    def upload_settings(self) -> UploadSettings:
        return UploadSettings(**(self.get('upload', {}) or {}))

    def supabase_settings(self) -> SupabaseSettings:
        return SupabaseSettings(**(self.get('supabase', {}) or {}))

    def get_supabase_api_key(self) -> str:
        """Get the Supabase API key - CRASHES if not found."""
        settings = self.supabase_settings()
        api_key = settings.api_key or os.environ.get(settings.api_key_env)
        if not api_key:
            raise ValueError(f"Supabase API key not configured: set supabase.api_key "
                             f"or the {settings.api_key_env} environment variable")
        return api_key

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())
