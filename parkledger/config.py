"""
Configuration management using Pydantic models loaded from YAML.
"""

from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .domain.models import PricingConfig


class PricingDefaults(BaseModel):
    """Tariff used when no pricing document exists yet."""
    hourly_rate: Decimal = Decimal("5.00")
    minimum_charge: Decimal = Decimal("2.00")
    currency: str = "USD"

    @field_validator("hourly_rate", "minimum_charge")
    @classmethod
    def validate_positive(cls, value: Decimal) -> Decimal:
        """Ensure amounts are positive."""
        if value <= 0:
            raise ValueError(f"Amount must be greater than zero, got {value}")
        return value

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        """Normalize to an upper-case three-letter code."""
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Currency must be a three-letter code, got {value!r}")
        return code

    def to_pricing(self) -> PricingConfig:
        return PricingConfig(
            hourly_rate=self.hourly_rate,
            minimum_charge=self.minimum_charge,
            currency=self.currency,
        )


class InventoryConfig(BaseModel):
    """Initial slot inventory."""
    slot_count: int = 6

    @field_validator("slot_count")
    @classmethod
    def validate_slot_count(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("slot_count must be greater than zero")
        return value


class BackendConfig(BaseModel):
    """Hosted backend project settings."""
    project_id: str
    api_key: str
    storage_bucket: str = ""
    timeout_seconds: float = 30

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        return value

    def get_bucket(self) -> str:
        """Storage bucket, defaulting to the project's standard bucket."""
        return self.storage_bucket or f"{self.project_id}.appspot.com"


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    pricing: PricingDefaults = Field(default_factory=PricingDefaults)
    inventory: InventoryConfig = Field(default_factory=InventoryConfig)
    max_deposit: Decimal = Decimal("1000")
    local_state_file: Path = Path(".parkledger_state.json")
    backend: Optional[BackendConfig] = None

    @field_validator("max_deposit")
    @classmethod
    def validate_max_deposit(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("max_deposit must be greater than zero")
        return value

    def require_backend(self) -> BackendConfig:
        """
        Return the backend settings.

        Raises:
            ValueError: If the config has no backend section
        """
        if self.backend is None:
            raise ValueError(
                "No 'backend' section in the config file. "
                "Add one or use --mock to run against local data."
            )
        return self.backend

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
