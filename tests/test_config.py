"""Tests for the Pydantic configuration model.

These tests verify:
1. Default values
2. snake_case and camelCase option names
3. Validation of numeric limits and unknown options
4. from_options() normalization
"""

import pytest
from pydantic import ValidationError

from iorpc.config import IorpcConfig


class TestDefaults:
    def test_default_values(self) -> None:
        config = IorpcConfig()
        assert config.max_pending_responses == 10_000
        assert config.allow_nested_functions is False
        assert config.expose_errors is True
        assert config.inject_to_this is True
        assert config.ignore_callback_unavailable is False
        assert config.max_depth == 200

    def test_frozen(self) -> None:
        config = IorpcConfig()
        with pytest.raises(ValidationError):
            config.expose_errors = False


class TestOptionNames:
    def test_snake_case(self) -> None:
        config = IorpcConfig(max_pending_responses=5, allow_nested_functions=True)
        assert config.max_pending_responses == 5
        assert config.allow_nested_functions is True

    def test_camel_case(self) -> None:
        """Option names used by other implementations are accepted."""
        config = IorpcConfig(
            maxPendingResponses=7,
            allowNestedFunctions=True,
            exposeErrors=False,
            injectToThis=False,
            ignoreCallbackUnavailable=True,
        )
        assert config.max_pending_responses == 7
        assert config.allow_nested_functions is True
        assert config.expose_errors is False
        assert config.inject_to_this is False
        assert config.ignore_callback_unavailable is True


class TestValidation:
    @pytest.mark.parametrize("value", [0, -1])
    def test_max_pending_must_be_positive(self, value: int) -> None:
        with pytest.raises(ValidationError):
            IorpcConfig(max_pending_responses=value)

    def test_max_depth_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            IorpcConfig(max_depth=0)

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(ValidationError):
            IorpcConfig(timeout=5)


class TestFromOptions:
    def test_none_gives_defaults(self) -> None:
        assert IorpcConfig.from_options(None) == IorpcConfig()

    def test_mapping(self) -> None:
        config = IorpcConfig.from_options({"maxPendingResponses": 3})
        assert config.max_pending_responses == 3

    def test_config_instance_passthrough(self) -> None:
        config = IorpcConfig(expose_errors=False)
        assert IorpcConfig.from_options(config) is config

    def test_overrides_on_instance(self) -> None:
        base = IorpcConfig(expose_errors=False, max_pending_responses=9)
        config = IorpcConfig.from_options(base, allow_nested_functions=True)
        assert config.allow_nested_functions is True
        assert config.expose_errors is False
        assert config.max_pending_responses == 9

    def test_overrides_on_mapping(self) -> None:
        config = IorpcConfig.from_options({"exposeErrors": False}, max_depth=10)
        assert config.expose_errors is False
        assert config.max_depth == 10
