"""
Tests for the YAML configuration pipeline.

Covers:
- get_active_config(): shipped defaults compile, trace log emitted
- Checksum is deterministic and changes with the fragments
- Threshold policies compile to Decimal tiers; units, categories and
  auto-approval amounts preserved
- Templates compile to typed condition slots
- Compilation failures: bad thresholds, auto-approval amount not below
  the first tier, duplicate policy, unknown field,
  field type mismatch, malformed default value, bad settings
- Missing directory or fragment
"""

import shutil
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from validation_config import CompilationFailedError, get_active_config
from validation_config.loader import load_configuration_set
from validation_kernel.domain.rules import ConditionOperator, FieldType, RuleAction, RuleCategory
from validation_kernel.domain.validation import EntityType, Priority

DEFAULTS_DIR = Path(__file__).resolve().parents[2] / "validation_config" / "defaults"


@pytest.fixture
def config_dir(tmp_path):
    """Writable copy of the shipped configuration."""
    target = tmp_path / "config"
    shutil.copytree(DEFAULTS_DIR, target)
    return target


def rewrite(path: Path, mutate):
    data = yaml.safe_load(path.read_text())
    mutate(data)
    path.write_text(yaml.safe_dump(data, sort_keys=False))


class TestDefaults:

    def test_defaults_compile(self, default_config):
        assert default_config.config_id == "VALIDATION-DEFAULT"
        assert default_config.settings.staleness_window_hours == 48
        assert default_config.settings.default_priority == Priority.MEDIUM
        assert default_config.settings.default_workspace == "default"
        assert len(default_config.thresholds.policies) == 9
        assert len(default_config.templates) == 9

    def test_every_entity_type_has_a_default_policy(self, default_config):
        for entity_type in EntityType:
            assert default_config.thresholds.lookup("any", entity_type) is not None

    def test_expense_tiers(self, default_config):
        expense = default_config.thresholds.lookup("default", EntityType.EXPENSE)
        assert expense.level_thresholds == (
            Decimal("50000"), Decimal("200000"), Decimal("1000000"),
        )

    def test_leave_policy_counts_days(self, default_config):
        leave = default_config.thresholds.lookup("default", EntityType.LEAVE)
        assert leave.unit == "days"
        assert leave.level_thresholds == (Decimal(3), Decimal(7), Decimal(15))

    def test_auto_approval_amounts(self, default_config):
        expense = default_config.thresholds.lookup("default", EntityType.EXPENSE)
        debt = default_config.thresholds.lookup("default", EntityType.DEBT)
        assert expense.auto_approve_below == Decimal("10000")
        assert not debt.auto_approves

    def test_category_policy_wins_for_its_category(self, config_dir):
        rewrite(
            config_dir / "thresholds.yaml",
            lambda d: d["policies"].append({
                "entity_type": "expense",
                "category": "travel",
                "level_thresholds": [1000, 2000, 3000],
            }),
        )
        compiled = get_active_config(config_dir)
        travel = compiled.thresholds.lookup("default", EntityType.EXPENSE, "travel")
        other = compiled.thresholds.lookup("default", EntityType.EXPENSE, "meals")
        assert travel.policy_key == "*/expense/travel"
        assert travel.auto_approve_below == 0
        assert other.policy_key == "*/expense"

    def test_templates_are_typed(self, default_config):
        templates = {t.template_id: t for t in default_config.templates}
        small = templates["auto_approve_small_advances"]
        assert small.category == RuleCategory.ADVANCE
        assert small.action == RuleAction.APPROVE
        (slot,) = small.condition_template
        assert slot.field == "amount"
        assert slot.field_type == FieldType.NUMBER
        assert slot.operator == ConditionOperator.LESS_THAN
        assert slot.default_value == 50000

    def test_trace_log_emitted(self, config_dir, captured_logs):
        compiled = get_active_config(config_dir)
        traces = [r for r in captured_logs() if r["message"] == "VALIDATION_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == compiled.checksum
        assert traces[0]["template_count"] == 9


class TestChecksum:

    def test_checksum_is_deterministic(self, config_dir):
        assert (
            load_configuration_set(config_dir).checksum
            == load_configuration_set(config_dir).checksum
        )

    def test_checksum_changes_with_content(self, config_dir):
        before = load_configuration_set(config_dir).checksum
        rewrite(
            config_dir / "engine.yaml",
            lambda d: d["engine"].update(staleness_window_hours=24),
        )
        after = get_active_config(config_dir)
        assert after.checksum != before
        assert after.settings.staleness_window_hours == 24


class TestCompilationFailures:

    def test_non_increasing_thresholds(self, config_dir):
        rewrite(
            config_dir / "thresholds.yaml",
            lambda d: d["policies"][0].update(level_thresholds=[100, 50, 200]),
        )
        with pytest.raises(CompilationFailedError) as exc_info:
            get_active_config(config_dir)
        assert exc_info.value.code == "COMPILATION_FAILED"
        assert any("strictly increasing" in e.message for e in exc_info.value.errors)

    def test_auto_approval_at_or_above_first_threshold(self, config_dir):
        rewrite(
            config_dir / "thresholds.yaml",
            lambda d: d["policies"][0].update(auto_approve_below=50000),
        )
        with pytest.raises(CompilationFailedError) as exc_info:
            get_active_config(config_dir)
        (error,) = exc_info.value.errors
        assert "below the level 1 threshold" in error.message
        assert error.source == "*/expense"

    def test_duplicate_policy(self, config_dir):
        rewrite(
            config_dir / "thresholds.yaml",
            lambda d: d["policies"].append(dict(d["policies"][0])),
        )
        with pytest.raises(CompilationFailedError) as exc_info:
            get_active_config(config_dir)
        assert any("duplicate policy" in e.message for e in exc_info.value.errors)

    def test_unknown_entity_type(self, config_dir):
        rewrite(
            config_dir / "thresholds.yaml",
            lambda d: d["policies"][0].update(entity_type="invoice"),
        )
        with pytest.raises(CompilationFailedError):
            get_active_config(config_dir)

    def test_template_with_unknown_field(self, config_dir):
        rewrite(
            config_dir / "rule_templates.yaml",
            lambda d: d["templates"][0]["conditions"][0].update(field="colour"),
        )
        with pytest.raises(CompilationFailedError) as exc_info:
            get_active_config(config_dir)
        assert exc_info.value.errors[0].category == "template"

    def test_template_field_type_mismatch(self, config_dir):
        rewrite(
            config_dir / "rule_templates.yaml",
            lambda d: d["templates"][0]["conditions"][0].update(field_type="text"),
        )
        with pytest.raises(CompilationFailedError):
            get_active_config(config_dir)

    def test_template_bad_default_value(self, config_dir):
        rewrite(
            config_dir / "rule_templates.yaml",
            lambda d: d["templates"][0]["conditions"][0].update(default_value="lots"),
        )
        with pytest.raises(CompilationFailedError):
            get_active_config(config_dir)

    def test_bad_settings(self, config_dir):
        rewrite(
            config_dir / "engine.yaml",
            lambda d: d["engine"].update(staleness_window_hours=0, default_priority="asap"),
        )
        with pytest.raises(CompilationFailedError) as exc_info:
            get_active_config(config_dir)
        assert len(exc_info.value.errors) == 2

    def test_missing_fragment(self, config_dir):
        (config_dir / "thresholds.yaml").unlink()
        with pytest.raises(FileNotFoundError):
            get_active_config(config_dir)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nowhere")
