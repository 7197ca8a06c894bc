"""Tests for input normalization."""

import pytest

from aws_lambda_component.exceptions import ConfigurationError
from aws_lambda_component.models import NetworkConfig, PersistedState
from aws_lambda_component.normalizer import (
    DEFAULT_DESCRIPTION,
    DEFAULT_HANDLER,
    DEFAULT_MEMORY,
    DEFAULT_REGION,
    DEFAULT_RUNTIME,
    DEFAULT_TIMEOUT,
    load_inputs,
    normalize_inputs,
)


class TestDefaults:
    """Every optional input gets its documented default."""

    def test_empty_inputs(self) -> None:
        desired = normalize_inputs({})

        assert desired.name == "lambda-component-dev"
        assert desired.region == DEFAULT_REGION
        assert desired.description == DEFAULT_DESCRIPTION
        assert desired.memory_size == DEFAULT_MEMORY
        assert desired.timeout == DEFAULT_TIMEOUT
        assert desired.handler == DEFAULT_HANDLER
        assert desired.runtime == DEFAULT_RUNTIME
        assert desired.environment == {}
        assert desired.layers == ()
        assert desired.network_config is None
        assert desired.role_reference is None
        assert desired.alias_name is None
        assert desired.provisioned_concurrency is None
        assert desired.monitoring is False
        assert desired.src == "."
        assert desired.shims == ()
        assert desired.bucket is None
        assert desired.code_artifact is None

    def test_none_inputs(self) -> None:
        assert normalize_inputs(None).name == "lambda-component-dev"

    def test_stage_drives_default_name(self) -> None:
        assert normalize_inputs({"stage": "prod"}).name == "lambda-component-prod"

    def test_persisted_name_and_region_win_over_defaults(self) -> None:
        persisted = PersistedState(name="orders", region="eu-west-1")

        desired = normalize_inputs({}, persisted)

        assert desired.name == "orders"
        assert desired.region == "eu-west-1"

    def test_explicit_inputs(self) -> None:
        desired = normalize_inputs(
            {
                "name": "orders",
                "region": "eu-central-1",
                "description": "Order API",
                "memory": 1024,
                "timeout": 30,
                "handler": "app.main",
                "runtime": "python3.11",
                "env": {"STAGE": "prod", "RETRIES": 3},
                "layers": ["arn:aws:lambda:eu-central-1:123456789012:layer:deps:4"],
                "vpc_config": {"security_group_ids": ["sg-1"], "subnet_ids": ["subnet-1"]},
                "role_arn": "arn:aws:iam::123456789012:role/custom",
                "alias": "live",
                "provisioned_concurrency": 5,
                "monitoring": True,
                "src": "./app",
                "shims": ["shim.py"],
                "bucket": "artifacts",
            }
        )

        assert desired.memory_size == 1024
        assert desired.environment == {"STAGE": "prod", "RETRIES": "3"}
        assert desired.network_config == NetworkConfig(("sg-1",), ("subnet-1",))
        assert desired.security_group_ids == ["sg-1"]
        assert desired.subnet_ids == ["subnet-1"]
        assert desired.wants_alias is True
        assert desired.provisioned_concurrency == 5
        assert desired.monitoring is True
        assert desired.shims == ("shim.py",)
        assert desired.bucket == "artifacts"

    def test_non_python_handler_not_validated(self) -> None:
        desired = normalize_inputs({"runtime": "java21", "handler": "example.Handler::handle"})
        assert desired.handler == "example.Handler::handle"


class TestValidation:
    """Invalid inputs fail before anything is touched."""

    @pytest.mark.parametrize("field", ["name", "region", "alias", "role_arn", "bucket"])
    @pytest.mark.parametrize("value", [123, ["orders"], {"a": 1}])
    def test_string_inputs_reject_other_types(self, field, value) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({field: value})
        assert exc_info.value.field == field
        assert "Must be a string" in str(exc_info.value)

    def test_empty_description_kept(self) -> None:
        assert normalize_inputs({"description": ""}).description == ""

    def test_concurrency_without_alias(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"provisioned_concurrency": 2})
        assert exc_info.value.field == "provisioned_concurrency"
        assert "alias" in str(exc_info.value)

    @pytest.mark.parametrize("value", [0, -1, "2", 1.5, True])
    def test_concurrency_must_be_positive_int(self, value) -> None:
        with pytest.raises(ConfigurationError):
            normalize_inputs({"alias": "live", "provisioned_concurrency": value})

    @pytest.mark.parametrize("alias", ["42", "has space", "a" * 129])
    def test_invalid_alias_name(self, alias) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"alias": alias})
        assert exc_info.value.field == "alias"

    @pytest.mark.parametrize("memory", [127, 10241, "512", True])
    def test_memory_bounds(self, memory) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"memory": memory})
        assert exc_info.value.field == "memory"

    @pytest.mark.parametrize("timeout", [0, 901])
    def test_timeout_bounds(self, timeout) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"timeout": timeout})
        assert exc_info.value.field == "timeout"

    def test_bounds_are_inclusive(self) -> None:
        desired = normalize_inputs({"memory": 10240, "timeout": 900})
        assert (desired.memory_size, desired.timeout) == (10240, 900)

    def test_network_config_needs_both_lists(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"vpc_config": {"security_group_ids": ["sg-1"]}})
        assert exc_info.value.field == "vpc_config"

    def test_empty_network_config_means_none(self) -> None:
        desired = normalize_inputs({"vpc_config": {"security_group_ids": [], "subnet_ids": []}})
        assert desired.network_config is None

    def test_unknown_input(self) -> None:
        with pytest.raises(ConfigurationError, match="memorySize"):
            normalize_inputs({"memorySize": 512})

    def test_invalid_function_name(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"name": "my.function"})
        assert exc_info.value.field == "name"

    def test_invalid_python_handler(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({"handler": "handler"})
        assert exc_info.value.field == "handler"

    def test_env_must_be_mapping(self) -> None:
        with pytest.raises(ConfigurationError):
            normalize_inputs({"env": ["A=1"]})

    def test_layers_must_be_list(self) -> None:
        with pytest.raises(ConfigurationError):
            normalize_inputs({"layers": "arn:aws:lambda:us-east-1:1:layer:x:1"})

    def test_user_to_auto_role_rejected(self) -> None:
        persisted = PersistedState(
            name="orders",
            role_arn="arn:aws:iam::123456789012:role/custom",
            role_is_auto_created=False,
        )
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_inputs({}, persisted)
        assert exc_info.value.field == "role_arn"

    def test_auto_to_user_role_allowed(self) -> None:
        persisted = PersistedState(
            name="orders",
            role_arn="arn:aws:iam::123456789012:role/orders-role",
            role_is_auto_created=True,
        )
        desired = normalize_inputs({"role_arn": "custom"}, persisted)
        assert desired.role_reference == "custom"


class TestLoadInputs:
    """Loading inputs from YAML."""

    def test_top_level_mapping(self, tmp_path) -> None:
        path = tmp_path / "lambda.yml"
        path.write_text("name: orders\nmemory: 256\n")
        assert load_inputs(path) == {"name": "orders", "memory": 256}

    def test_inputs_key(self, tmp_path) -> None:
        path = tmp_path / "serverless.yml"
        path.write_text("component: aws-lambda\ninputs:\n  name: orders\n")
        assert load_inputs(path) == {"name": "orders"}

    def test_empty_file(self, tmp_path) -> None:
        path = tmp_path / "lambda.yml"
        path.write_text("")
        assert load_inputs(path) == {}

    def test_non_mapping(self, tmp_path) -> None:
        path = tmp_path / "lambda.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_inputs(path)
