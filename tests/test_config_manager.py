"""Tests for loading and hot-reloading workflow definitions."""

import pytest

from src.core import ConfigurationException
from src.workflow.infrastructure import WorkflowConfigManager

from tests.conftest import WORKFLOWS_YAML

VALID = """
workflows:
  - code: TASK_V1
    entity_type: TASK
    initial_state: TODO
    states:
      - {code: TODO, state_type: INITIAL}
      - {code: DOING, sla_days: 2}
      - {code: DONE, state_type: TERMINAL}
    transitions:
      - {code: START, from_state: TODO, to_state: DOING}
      - {code: FINISH, from_state: DOING, to_state: DONE}
"""

UNDEFINED_TARGET = """
workflows:
  - code: TASK_V2
    entity_type: TASK
    initial_state: TODO
    states:
      - {code: TODO, state_type: INITIAL}
    transitions:
      - {code: START, from_state: TODO, to_state: NOWHERE}
"""


class TestLoad:
    def test_shipped_definitions(self):
        manager = WorkflowConfigManager()
        config = manager.load(WORKFLOWS_YAML)

        assert set(config.by_entity_type) == {"CAP", "FINDING", "REVIEW"}
        cap = config.for_entity_type("CAP")
        assert cap.initial_state == "DRAFT"
        assert cap.get_state("SUBMITTED").sla_days == 7
        assert cap.get_state("CLOSED").is_terminal
        assert [r.name for r in cap.escalation_rules_for("ACCEPTED")] == ["CAP Implementation Overdue"]
        mark_implemented = cap.find_transition("ACCEPTED", "MARK_IMPLEMENTED")
        assert mark_implemented.condition.label == "At least one evidence document"

    def test_missing_file_means_no_workflows(self, tmp_path):
        manager = WorkflowConfigManager()
        config = manager.load(tmp_path / "absent.yaml")
        assert config.workflows == []

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text("workflows: [unbalanced")
        with pytest.raises(ConfigurationException):
            WorkflowConfigManager().load(path)

    def test_undefined_state_rejected(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text(UNDEFINED_TARGET)
        with pytest.raises(ConfigurationException):
            WorkflowConfigManager().load(path)

    def test_unknown_operator_rejected(self):
        data = {
            "workflows": [{
                "code": "TASK_V1",
                "entity_type": "TASK",
                "initial_state": "TODO",
                "states": [{"code": "TODO"}, {"code": "DONE"}],
                "transitions": [{
                    "code": "FINISH",
                    "from_state": "TODO",
                    "to_state": "DONE",
                    "condition": {"type": "condition", "field": "x", "operator": "roughly", "value": 1},
                }],
            }]
        }
        with pytest.raises(ConfigurationException):
            WorkflowConfigManager().load_data(data)

    def test_malformed_pattern_in_nested_group_rejected(self):
        data = {
            "workflows": [{
                "code": "TASK_V1",
                "entity_type": "TASK",
                "initial_state": "TODO",
                "states": [{"code": "TODO"}, {"code": "DONE"}],
                "transitions": [{
                    "code": "FINISH",
                    "from_state": "TODO",
                    "to_state": "DONE",
                    "condition": {
                        "type": "group",
                        "conditions": [
                            {"type": "condition", "field": "priority", "operator": "equals", "value": "HIGH"},
                            {
                                "type": "group",
                                "logic": "OR",
                                "conditions": [
                                    {"type": "condition", "field": "title", "operator": "matches", "value": "[a-"},
                                ],
                            },
                        ],
                    },
                }],
            }]
        }
        with pytest.raises(ConfigurationException):
            WorkflowConfigManager().load_data(data)

    def test_one_workflow_per_entity_type(self):
        workflow = {
            "code": "A", "entity_type": "TASK", "initial_state": "TODO",
            "states": [{"code": "TODO"}],
        }
        with pytest.raises(ConfigurationException):
            WorkflowConfigManager().load_data({"workflows": [workflow, {**workflow, "code": "B"}]})

    def test_get_config_before_load(self):
        with pytest.raises(RuntimeError):
            WorkflowConfigManager().get_config()


class TestReload:
    def test_invalid_edit_keeps_previous_definitions(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text(VALID)
        manager = WorkflowConfigManager()
        manager.load(path)

        path.write_text(UNDEFINED_TARGET)
        assert manager.reload() is False
        assert manager.config.for_entity_type("TASK").code == "TASK_V1"

    def test_valid_edit_replaces_definitions(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text(VALID)
        manager = WorkflowConfigManager()
        manager.load(path)

        path.write_text(VALID.replace("TASK_V1", "TASK_V3"))
        assert manager.reload() is True
        assert manager.config.for_entity_type("TASK").code == "TASK_V3"

    def test_reload_without_load(self):
        assert WorkflowConfigManager().reload() is False

    def test_watching_a_missing_file_is_skipped(self, tmp_path):
        manager = WorkflowConfigManager()
        manager.load(tmp_path / "absent.yaml")
        manager.start_watching()
        manager.stop_watching()
