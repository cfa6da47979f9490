"""
Node configuration parsing tests.
"""

import pytest

from engine.errors import FlowValidationError, UnsupportedNodeType
from engine.executors import EXECUTORS
from engine.node_config import (
    NODE_TYPES,
    ConditionConfig,
    LoopConfig,
    SendButtonsConfig,
    WaitForReplyConfig,
    parse_node_config,
)


class TestParseNodeConfig:
    """Editor camelCase payloads map onto typed models."""

    def test_wait_for_reply(self):
        config = parse_node_config(
            "waitForReply",
            {"variableName": "answer", "expectedType": "button", "timeoutSeconds": 60},
        )
        assert isinstance(config, WaitForReplyConfig)
        assert config.variable_name == "answer"
        assert config.expected_type == "button"
        assert config.timeout_seconds == 60

    def test_defaults_apply_for_empty_config(self):
        config = parse_node_config("loop", None)
        assert isinstance(config, LoopConfig)
        assert config.loop_type == "count"
        assert config.max_iterations == 10

    def test_condition_rules(self):
        config = parse_node_config("condition", {
            "conditions": [{"variable": "age", "operator": "gt", "value": "18", "outputHandle": "adult"}],
            "defaultHandle": "minor",
        })
        assert isinstance(config, ConditionConfig)
        assert config.conditions[0].output_handle == "adult"
        assert config.default_handle == "minor"

    def test_unknown_keys_are_ignored(self):
        config = parse_node_config("sendButtons", {
            "bodyText": "Pick one",
            "buttons": [{"id": "yes", "title": "Yes"}],
            "editorColor": "#fff",
        })
        assert isinstance(config, SendButtonsConfig)
        assert config.buttons[0].id == "yes"

    def test_unsupported_node_type(self):
        with pytest.raises(UnsupportedNodeType) as exc_info:
            parse_node_config("sendCarrierPigeon", {})
        assert exc_info.value.node_type == "sendCarrierPigeon"

    def test_malformed_config_lists_problems(self):
        with pytest.raises(FlowValidationError) as exc_info:
            parse_node_config("waitForReply", {"expectedType": "video"})
        assert exc_info.value.problems
        assert "waitForReply" in exc_info.value.problems[0]

    def test_configs_are_immutable(self):
        config = parse_node_config("sendText", {"message": "hi"})
        with pytest.raises(Exception):
            config.message = "changed"


class TestExecutorRegistry:
    """Every node type has exactly one executor."""

    def test_registry_covers_node_types(self):
        assert NODE_TYPES <= set(EXECUTORS)
