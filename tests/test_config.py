"""
Tests for application settings.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from velumx.utils.config import Settings, get_settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettingsValidation:
    """Test that bad deployments fail at startup."""

    def test_defaults_are_valid(self):
        settings = make_settings()
        assert settings.validation_errors() == []
        assert settings.PRICE_ORACLE_ENABLED is False

    @pytest.mark.parametrize("field, value", [
        ("POOL_DISCOVERY_INTERVAL", 59),
        ("ANALYTICS_UPDATE_INTERVAL", 29),
        ("PRICE_UPDATE_INTERVAL", 9),
        ("CACHE_WARMING_INTERVAL", 29),
        ("ANALYTICS_BATCH_SIZE", 0),
        ("MAX_POOLS_PER_PAGE", 201),
        ("MAX_POSITIONS_PER_PAGE", 501),
        ("STACKS_SWAP_CONTRACT_NAME", ""),
        ("LIQUIDITY_SOURCE", "chain"),
        ("STACKS_RPC_URL", ""),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(**{field: value})
        assert field in str(exc_info.value)

    def test_oracle_requires_url(self):
        with pytest.raises(ValidationError):
            make_settings(PRICE_ORACLE_ENABLED=True)

        settings = make_settings(PRICE_ORACLE_ENABLED=True, PRICE_ORACLE_URL="http://oracle.test")
        assert settings.PRICE_ORACLE_URL == "http://oracle.test"

    def test_featured_pool_ids(self):
        settings = make_settings(FEATURED_POOLS=" STX-USDCx, ,STX-VEX ")
        assert settings.featured_pool_ids == ["STX-USDCx", "STX-VEX"]

    @patch.dict("os.environ", {"cache_warming_interval": "120", "FEE_TRACKING_ENABLED": "false"})
    def test_environment_overrides(self):
        """Variable names are matched case-insensitively."""
        settings = make_settings()
        assert settings.CACHE_WARMING_INTERVAL == 120
        assert settings.FEE_TRACKING_ENABLED is False

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
