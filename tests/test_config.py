"""
Tests for YAML configuration loading.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from parkledger.config import AppConfig


def _write(tmp_path: Path, text: str) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(text, encoding="utf-8")
    return config_path


class TestAppConfig:
    """Tests for AppConfig.load_from_yaml."""

    def test_defaults_for_empty_file(self, tmp_path):
        config = AppConfig.load_from_yaml(_write(tmp_path, ""))

        assert config.timezone == "UTC"
        assert config.pricing.hourly_rate == Decimal("5.00")
        assert config.inventory.slot_count == 6
        assert config.backend is None

    def test_full_file(self, tmp_path):
        config = AppConfig.load_from_yaml(_write(tmp_path, """
timezone: "Europe/Berlin"
pricing:
  hourly_rate: 3.5
  minimum_charge: 1
  currency: eur
inventory:
  slot_count: 12
backend:
  project_id: demo-project
  api_key: key-123
"""))

        pricing = config.pricing.to_pricing()
        assert pricing.hourly_rate == Decimal("3.5")
        assert pricing.currency == "EUR"
        assert config.inventory.slot_count == 12
        assert config.require_backend().get_bucket() == "demo-project.appspot.com"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AppConfig.load_from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, "pricing: [unclosed"))

    def test_non_mapping_root(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, "- just\n- a list\n"))

    @pytest.mark.parametrize(
        "text",
        [
            "pricing:\n  hourly_rate: 0\n",
            "pricing:\n  currency: dollars\n",
            "inventory:\n  slot_count: 0\n",
            "max_deposit: -1\n",
        ],
    )
    def test_invalid_values(self, tmp_path, text):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, text))

    def test_require_backend_without_section(self):
        with pytest.raises(ValueError, match="--mock"):
            AppConfig().require_backend()
