"""Configuration file loader with validation"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import ValidationError as PydanticValidationError
from .errors import ConfigurationError
from donation_engine.models.settings import EngineSettings

DEFAULT_CONFIG_PATH = "config/settings.yaml"

REQUIRED_KEYS = ['version', 'organization', 'currency', 'receipts', 'delivery', 'reconciliation', 'storage']

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "ORG_NAME": ("organization", "name"),
    "ORG_ADDRESS": ("organization", "address"),
    "ORG_PHONE": ("organization", "phone"),
    "ORG_EMAIL": ("organization", "email"),
    "ORG_REGISTRATION_NUMBER": ("organization", "registration_number"),
    "SMTP_HOST": ("delivery", "smtp_host"),
    "SMTP_PORT": ("delivery", "smtp_port"),
    "SMTP_USER": ("delivery", "smtp_user"),
    "SMTP_PASSWORD": ("delivery", "smtp_password"),
    "EMAIL_FROM": ("delivery", "sender_address"),
    "ARTIFACT_DIR": ("receipts", "artifact_dir"),
    "DATABASE_PATH": ("storage", "database_path"),
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML configuration file with validation.

    Args:
        config_path: Path to configuration file (defaults to $CONFIG_PATH or config/settings.yaml)

    Returns:
        Dictionary with configuration

    Raises:
        ConfigurationError: If file doesn't exist or invalid YAML
    """
    config_path = config_path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)
    config_file = Path(config_path)

    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error loading configuration: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    # Validate required keys
    missing_keys = [key for key in REQUIRED_KEYS if key not in config]

    if missing_keys:
        raise ConfigurationError(f"Missing required configuration keys: {missing_keys}")

    return config


def save_config(config_path: str, config: Dict[str, Any]) -> None:
    """
    Save configuration to YAML file

    Args:
        config_path: Path to configuration file
        config: Configuration dictionary

    Raises:
        ConfigurationError: If unable to write file
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    except OSError as e:
        raise ConfigurationError(f"Error saving configuration: {e}")


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay deployment values and secrets from the environment"""
    environ = os.environ if environ is None else environ
    merged = {section: dict(values or {}) if isinstance(values, dict) else values
              for section, values in config.items()}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            merged.setdefault(section, {})[key] = value

    return merged


def load_settings(config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> EngineSettings:
    """
    Load, overlay and validate engine settings

    Raises:
        ConfigurationError: If the file is missing, malformed or fails validation
    """
    config = apply_env_overrides(load_config(config_path), environ)
    try:
        return EngineSettings.model_validate(config)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")
