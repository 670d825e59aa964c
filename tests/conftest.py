"""
Pytest fixtures for the validation kernel test suite.

Provides:
- An in-memory SQLite database per test (tables created fresh)
- A DeterministicClock and services wired to the test session
- Structured log capture
- Threshold policies and rule helpers shared by service tests

Environment Variables:
- None.  Tests that need two connections (tests/concurrency) build their
  own file-backed SQLite database under ``tmp_path``.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from validation_kernel.db.engine import create_tables
from validation_kernel.domain.clock import DeterministicClock
from validation_kernel.domain.rules import (
    ConditionSpec,
    RuleAction,
    RuleCategory,
    RuleDraft,
)
from validation_kernel.domain.thresholds import ThresholdPolicy, ThresholdPolicySet
from validation_kernel.domain.validation import EngineSettings, EntityType
from validation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from validation_kernel.services.auditor_service import AuditorService
from validation_kernel.services.rule_service import RuleService
from validation_kernel.services.threshold_service import ThresholdService
from validation_kernel.services.validation_service import ValidationService

from validation_config import get_active_config

TEST_ACTOR_ID = "admin-1"
START_TIME = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture validation_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, validation_service):
            validation_service.create_validation_request(...)
            logs = captured_logs()
            assert any(r["message"] == "validation_request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("validation_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with every table created."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Time and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(START_TIME)


@pytest.fixture(scope="session")
def default_config():
    """The compiled configuration shipped with the package."""
    return get_active_config()


def make_policy(entity_type, thresholds, **kwargs):
    return ThresholdPolicy(
        entity_type=EntityType(entity_type),
        level_thresholds=tuple(Decimal(str(t)) for t in thresholds),
        **kwargs,
    )


@pytest.fixture
def threshold_policies():
    """Policies used by service tests.

    expense: <= 1M level 1, <= 5M level 2, <= 20M level 3, above owner.
    advance: <= 30k level 1, <= 100k level 2, <= 500k level 3.
    purchase_order without amount needs two levels.
    """
    return ThresholdPolicySet(policies=(
        make_policy("expense", (1_000_000, 5_000_000, 20_000_000)),
        make_policy("advance", (30_000, 100_000, 500_000)),
        make_policy(
            "purchase_order", (100_000, 500_000, 2_000_000), levels_without_amount=2,
        ),
        make_policy("transfer", (10, 50, 100), first_validator_level=2),
    ))


@pytest.fixture
def engine_settings():
    return EngineSettings(staleness_window_hours=48)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def auditor_service(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def validation_service(
    session, auditor_service, deterministic_clock, threshold_policies, engine_settings,
):
    return ValidationService(
        session,
        auditor_service,
        deterministic_clock,
        thresholds=threshold_policies,
        settings=engine_settings,
    )


@pytest.fixture
def rule_service(session, auditor_service, deterministic_clock, default_config):
    return RuleService(
        session,
        auditor_service,
        deterministic_clock,
        templates=default_config.templates,
    )


@pytest.fixture
def threshold_service(session, auditor_service, deterministic_clock, threshold_policies):
    return ThresholdService(
        session,
        auditor_service,
        deterministic_clock,
        defaults=threshold_policies,
    )


@pytest.fixture
def make_rule(rule_service):
    """Factory fixture: save a rule from ``(field, operator, value)`` triples."""

    def _make(
        name,
        category,
        action,
        *conditions,
        position=None,
        action_reason=None,
        is_active=True,
    ):
        return rule_service.upsert_rule(
            RuleDraft(
                name=name,
                category=RuleCategory(category),
                conditions=tuple(ConditionSpec(f, op, v) for f, op, v in conditions),
                action=RuleAction(action),
                action_reason=action_reason,
                is_active=is_active,
                position=position,
            ),
            actor_id=TEST_ACTOR_ID,
        )

    return _make
