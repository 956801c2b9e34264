"""Tests for the feature flag service."""

import threading
from datetime import time, timedelta

import pytest

from flagengine.core.config import reset_settings
from flagengine.core.errors import (
    ErrorCode,
    FlagAlreadyExistsError,
    FlagNotFoundError,
    FlagValidationError,
    InvalidDependencyError,
    OverrideNotFoundError,
    RuleNotFoundError,
    UnknownOperatorError,
)
from flagengine.core.feature_flags import (
    ChangeAction,
    ChangeHistory,
    Condition,
    EvaluationReason,
    ExperimentVariant,
    FeatureFlagService,
    FlagRegistry,
    FlagType,
    GradualStep,
    Operator,
    OverrideType,
    get_flag_service,
    reset_flag_service,
)


@pytest.fixture
def beta(service):
    service.create_flag("beta-feature", "Beta Feature", "New beta functionality", False)
    return service


class TestFlagLifecycle:
    """Tests for create/get/update/delete."""

    def test_create_infers_type(self, service):
        assert service.create_flag("a", "A", "", False).flag_type is FlagType.BOOLEAN
        assert service.create_flag("b", "B", "", "blue").flag_type is FlagType.STRING
        assert service.create_flag("c", "C", "", 10).flag_type is FlagType.NUMBER
        assert service.create_flag("d", "D", "", {"x": 1}).flag_type is FlagType.JSON

    def test_typed_constructors(self, service):
        assert service.create_string_flag("s", "S", "", "v").flag_type is FlagType.STRING
        assert service.create_json_flag("j", "J", "", [1, 2]).flag_type is FlagType.JSON

    def test_create_defaults(self, beta):
        flag = beta.get_flag("beta-feature")
        assert flag.enabled is True
        assert flag.name == "Beta Feature"
        assert flag.description == "New beta functionality"
        assert flag.rules == ()
        assert flag.id
        assert flag.created_at <= flag.updated_at

    def test_explicit_type_must_match_default(self, service):
        """Test an explicit type rejects a default of another shape."""
        with pytest.raises(FlagValidationError):
            service.create_flag("mismatch", "Mismatch", "", True, FlagType.STRING)
        with pytest.raises(FlagValidationError):
            service.create_flag("bogus", "Bogus", "", True, "integer")
        assert service.create_flag("limit", "Limit", "", 5, FlagType.NUMBER).default_value == 5
        assert service.create_flag("cfg", "Cfg", "", "raw", FlagType.JSON).default_value == "raw"
        assert sorted(f.key for f in service.list_flags()) == ["cfg", "limit"]

    def test_json_default_is_copied(self, service):
        """Test later edits to the caller's dict do not reach the stored flag."""
        config = {"rate_limit": 100}
        service.create_json_flag("config", "Config", "", config)
        config["rate_limit"] = 1
        assert service.get_flag("config").default_value == {"rate_limit": 100}

        replacement = {"rate_limit": 200}
        service.update_flag("config", "Config", "", replacement)
        replacement["rate_limit"] = 2
        assert service.evaluate("config", "u").value == {"rate_limit": 200}

    def test_create_duplicate(self, beta):
        with pytest.raises(FlagAlreadyExistsError) as exc_info:
            beta.create_flag("beta-feature", "Again", "", True)
        assert exc_info.value.code is ErrorCode.FLAG_ALREADY_EXISTS

    def test_create_requires_key_and_default(self, service):
        with pytest.raises(FlagValidationError):
            service.create_flag("", "Empty", "", False)
        with pytest.raises(FlagValidationError):
            service.create_flag("none", "None", "", None)
        assert service.list_flags() == []

    def test_get_unknown(self, service):
        with pytest.raises(FlagNotFoundError) as exc_info:
            service.get_flag("missing")
        assert exc_info.value.code is ErrorCode.FLAG_NOT_FOUND
        assert "missing" in str(exc_info.value)

    def test_list_flags(self, service):
        service.create_flag("a", "A", "", False)
        service.create_flag("b", "B", "", True)
        assert sorted(f.key for f in service.list_flags()) == ["a", "b"]

    def test_update_flag(self, beta):
        before = beta.get_flag("beta-feature")
        after = beta.update_flag("beta-feature", "Renamed", "Changed", True)
        assert after.name == "Renamed"
        assert after.default_value is True
        assert after.id == before.id
        assert after.created_at == before.created_at
        assert after.updated_at >= before.updated_at

    def test_update_rejects_type_change(self, beta):
        with pytest.raises(FlagValidationError):
            beta.update_flag("beta-feature", "x", "", "not-a-bool")
        assert beta.get_flag("beta-feature").default_value is False

    def test_update_json_accepts_any_shape(self, service):
        service.create_json_flag("config", "Config", "", {"rate_limit": 100})
        flag = service.update_flag("config", "Config", "", [1, 2, 3])
        assert flag.default_value == [1, 2, 3]
        assert flag.flag_type is FlagType.JSON

    def test_delete_flag(self, beta):
        beta.delete_flag("beta-feature")
        with pytest.raises(FlagNotFoundError):
            beta.get_flag("beta-feature")
        with pytest.raises(FlagNotFoundError):
            beta.delete_flag("beta-feature")

    def test_enable_disable(self, beta):
        beta.disable_flag("beta-feature")
        result = beta.evaluate("beta-feature", "user-1")
        assert result.reason is EvaluationReason.DISABLED
        beta.enable_flag("beta-feature")
        assert beta.get_flag("beta-feature").enabled is True


class TestTargeting:
    """Tests for targeting rules through the service."""

    def test_premium_users(self, beta):
        """Premium users get the beta feature, free users get the default."""
        beta.add_property_rule("beta-feature", "plan", "equals", "premium", True)

        premium = beta.evaluate("beta-feature", "user-123", {"plan": "premium"})
        assert premium.value is True
        assert premium.reason is EvaluationReason.RULE_MATCH

        free = beta.evaluate("beta-feature", "user-456", {"plan": "free"})
        assert free.value is False
        assert free.reason is EvaluationReason.DEFAULT

    def test_rule_priority_defaults_after_existing(self, beta):
        first = beta.add_property_rule("beta-feature", "plan", "equals", "premium", True)
        second = beta.add_property_rule("beta-feature", "plan", "equals", "premium", False)
        assert first.priority < second.priority
        assert beta.evaluate("beta-feature", "u", {"plan": "premium"}).rule_id == first.id

    def test_explicit_priority(self, beta):
        beta.add_targeting_rule(
            "beta-feature",
            [{"property": "plan", "operator": "equals", "value": "premium"}],
            True,
            priority=5,
        )
        urgent = beta.add_targeting_rule(
            "beta-feature",
            [Condition(property="plan", operator=Operator.EQUALS, value="premium")],
            False,
            priority=1,
        )
        result = beta.evaluate("beta-feature", "u", {"plan": "premium"})
        assert result.rule_id == urgent.id
        assert result.value is False

    def test_multiple_conditions(self, beta):
        beta.add_targeting_rule(
            "beta-feature",
            [
                {"property": "plan", "operator": "equals", "value": "premium"},
                {"property": "country", "operator": "in", "value": ["US", "CA"]},
            ],
            True,
        )
        assert beta.evaluate("beta-feature", "u", {"plan": "premium", "country": "CA"}).value is True
        assert beta.evaluate("beta-feature", "u", {"plan": "premium", "country": "DE"}).value is False

    def test_unknown_operator(self, beta):
        with pytest.raises(UnknownOperatorError) as exc_info:
            beta.add_property_rule("beta-feature", "plan", "matches_regex", "p.*", True)
        assert exc_info.value.code is ErrorCode.UNKNOWN_OPERATOR
        assert beta.get_flag("beta-feature").rules == ()

    def test_add_user_to_flag(self, beta):
        beta.add_property_rule("beta-feature", "plan", "equals", "free", False)
        rule = beta.add_user_to_flag("beta-feature", "vip-user")
        assert beta.get_flag("beta-feature").rules[0] == rule

        result = beta.evaluate("beta-feature", "vip-user", {"plan": "free"})
        assert result.value is True
        assert result.rule_id == rule.id

    def test_remove_rule(self, beta):
        rule = beta.add_property_rule("beta-feature", "plan", "equals", "premium", True)
        beta.remove_rule("beta-feature", rule.id)
        assert beta.evaluate("beta-feature", "u", {"plan": "premium"}).reason is EvaluationReason.DEFAULT
        with pytest.raises(RuleNotFoundError):
            beta.remove_rule("beta-feature", rule.id)


class TestRollouts:
    """Tests for rollouts through the service."""

    def test_percentage_distribution(self, beta, now):
        beta.set_percentage_rollout("beta-feature", 25)
        total = 2000
        enabled = sum(
            beta.evaluate("beta-feature", f"user-{i}", timestamp=now).value for i in range(total)
        )
        assert 15 <= enabled / total * 100 <= 35

    def test_percentage_is_sticky(self, beta, now):
        beta.set_percentage_rollout("beta-feature", 50)
        for i in range(50):
            first = beta.evaluate("beta-feature", f"user-{i}", timestamp=now).value
            later = beta.evaluate("beta-feature", f"user-{i}", timestamp=now + timedelta(days=3)).value
            assert first == later

    def test_invalid_percentage(self, beta):
        with pytest.raises(FlagValidationError):
            beta.set_percentage_rollout("beta-feature", 150)
        assert beta.get_flag("beta-feature").rollout is None

    def test_scheduled_rollout(self, beta, now):
        beta.set_scheduled_rollout("beta-feature", start_date=now - timedelta(hours=1))
        assert beta.evaluate("beta-feature", "u", timestamp=now).value is True
        assert beta.evaluate("beta-feature", "u", timestamp=now - timedelta(hours=2)).value is False

    def test_gradual_rollout(self, beta, now):
        beta.set_gradual_rollout(
            "beta-feature",
            [
                GradualStep(date=now - timedelta(days=1), percentage=0),
                GradualStep(date=now + timedelta(days=1), percentage=100),
            ],
        )
        assert beta.evaluate("beta-feature", "u", timestamp=now).value is False
        assert beta.evaluate("beta-feature", "u", timestamp=now + timedelta(days=2)).value is True

    def test_clear_rollout(self, beta, now):
        beta.set_percentage_rollout("beta-feature", 100)
        beta.clear_rollout("beta-feature")
        assert beta.evaluate("beta-feature", "u", timestamp=now).reason is EvaluationReason.DEFAULT


class TestSchedules:
    def test_schedule_window(self, beta, now):
        beta.add_property_rule("beta-feature", "plan", "equals", "premium", True)
        beta.set_schedule("beta-feature", start=now + timedelta(days=1))
        result = beta.evaluate("beta-feature", "u", {"plan": "premium"}, timestamp=now)
        assert result.reason is EvaluationReason.OUTSIDE_SCHEDULE
        assert result.value is False

        later = beta.evaluate("beta-feature", "u", {"plan": "premium"}, timestamp=now + timedelta(days=2))
        assert later.value is True

    def test_business_hours(self, beta, now):
        beta.set_percentage_rollout("beta-feature", 100)
        beta.set_schedule(
            "beta-feature",
            days_of_week=[0, 1, 2, 3, 4],
            daily_start=time(9, 0),
            daily_end=time(17, 0),
        )
        assert beta.evaluate("beta-feature", "u", timestamp=now).value is True
        saturday = now - timedelta(days=2)
        assert beta.evaluate("beta-feature", "u", timestamp=saturday).reason is EvaluationReason.OUTSIDE_SCHEDULE

    def test_clear_schedule(self, beta, now):
        beta.set_schedule("beta-feature", end=now - timedelta(days=1))
        beta.clear_schedule("beta-feature")
        assert beta.evaluate("beta-feature", "u", timestamp=now).reason is EvaluationReason.DEFAULT

    def test_invalid_timezone(self, beta):
        with pytest.raises(FlagValidationError):
            beta.set_schedule("beta-feature", timezone="Mars/Olympus")


class TestExperiments:
    """Tests for variants and A/B experiments."""

    def test_ab_split(self, service):
        service.create_string_flag("checkout-button", "Checkout Button", "", "blue")
        service.create_experiment(
            "checkout-button",
            [
                ExperimentVariant(name="control", value="blue", weight=33),
                ExperimentVariant(name="variant_a", value="green", weight=33),
                ExperimentVariant(name="variant_b", value="red", weight=34),
            ],
        )

        total = 3000
        counts = {"control": 0, "variant_a": 0, "variant_b": 0}
        for i in range(total):
            result = service.evaluate("checkout-button", f"user-{i}")
            assert result.reason is EvaluationReason.VARIANT
            counts[result.variant_key] += 1

        assert abs(counts["control"] / total * 100 - 33) <= 5
        assert abs(counts["variant_a"] / total * 100 - 33) <= 5
        assert abs(counts["variant_b"] / total * 100 - 34) <= 5

        metrics = service.get_metrics("checkout-button")
        assert metrics.total_evaluations == total
        assert sum(metrics.variant_counts.values()) == total

    def test_variant_values(self, service):
        service.create_string_flag("color", "Color", "", "grey")
        service.add_variant("color", "only", "purple", 1)
        result = service.evaluate("color", "user-1")
        assert result.value == "purple"
        assert result.variant_key == "only"

    def test_duplicate_variant(self, service):
        service.create_string_flag("color", "Color", "", "grey")
        service.add_variant("color", "a", "red", 1)
        with pytest.raises(FlagValidationError):
            service.add_variant("color", "a", "blue", 1)

    def test_negative_weight(self, service):
        service.create_string_flag("color", "Color", "", "grey")
        with pytest.raises(FlagValidationError):
            service.add_variant("color", "a", "red", -1)

    def test_duplicate_experiment_arms(self, service):
        service.create_string_flag("color", "Color", "", "grey")
        with pytest.raises(FlagValidationError):
            service.create_experiment(
                "color",
                [ExperimentVariant("a", "red", 50), ExperimentVariant("a", "blue", 50)],
            )


class TestOverrides:
    """Tests for overrides through the service."""

    def test_user_override(self, beta):
        beta.create_override("beta-feature", "user-1", True, reason="support ticket")
        result = beta.evaluate("beta-feature", "user-1")
        assert result.value is True
        assert result.reason is EvaluationReason.OVERRIDE

    def test_override_replaces_previous(self, beta):
        beta.create_override("beta-feature", "user-1", True)
        beta.create_override("beta-feature", "user-1", False)
        assert len(beta.get_flag("beta-feature").overrides) == 1
        assert beta.evaluate("beta-feature", "user-1").value is False

    def test_group_override(self, beta):
        beta.create_override("beta-feature", "internal", True, override_type="group")
        assert beta.evaluate("beta-feature", "anyone", group_ids=["internal"]).value is True
        assert beta.evaluate("beta-feature", "anyone").value is False

    def test_expiring_override(self, beta, now):
        beta.create_override("beta-feature", "user-1", True, expires_at=now + timedelta(hours=1))
        assert beta.evaluate("beta-feature", "user-1", timestamp=now).value is True
        late = now + timedelta(hours=2)
        assert beta.evaluate("beta-feature", "user-1", timestamp=late).reason is EvaluationReason.DEFAULT

    def test_remove_override(self, beta):
        beta.create_override("beta-feature", "user-1", True)
        beta.remove_override("beta-feature", "user-1")
        assert beta.evaluate("beta-feature", "user-1").reason is EvaluationReason.DEFAULT
        with pytest.raises(OverrideNotFoundError):
            beta.remove_override("beta-feature", "user-1")

    def test_remove_override_by_type(self, beta):
        beta.create_override("beta-feature", "ops", True, override_type=OverrideType.GROUP)
        with pytest.raises(OverrideNotFoundError):
            beta.remove_override("beta-feature", "ops")
        beta.remove_override("beta-feature", "ops", OverrideType.GROUP)


class TestEnvironments:
    """Tests for per-environment enablement."""

    def test_enable_for_environment(self, beta):
        beta.enable_for_environment("beta-feature", "staging")
        staging = beta.evaluate_in_environment("beta-feature", "u", "staging")
        assert staging.value is True
        assert staging.reason is EvaluationReason.ENVIRONMENT
        assert beta.evaluate_in_environment("beta-feature", "u", "production").value is False

    def test_disable_for_environment(self, beta):
        beta.enable_for_environment("beta-feature", "staging")
        beta.disable_for_environment("beta-feature", "staging")
        assert beta.evaluate_in_environment("beta-feature", "u", "staging").value is False

    def test_default_environment_from_settings(self, beta, monkeypatch):
        monkeypatch.setenv("FLAG_ENGINE_DEFAULT_ENVIRONMENT", "staging")
        reset_settings()
        beta.enable_for_environment("beta-feature", "staging")
        assert beta.evaluate("beta-feature", "u").value is True
        # Explicit environment wins over the configured default
        assert beta.evaluate("beta-feature", "u", {"environment": "production"}).value is False
        assert beta.evaluate_in_environment("beta-feature", "u", "production").value is False

    def test_environment_name_required(self, beta):
        with pytest.raises(FlagValidationError):
            beta.enable_for_environment("beta-feature", "")


class TestDependencies:
    """Tests for prerequisites through the service."""

    def test_dependency(self, service):
        service.create_flag("new-checkout", "New Checkout", "", False)
        service.create_flag("checkout-upsell", "Upsell", "", True)
        service.add_dependency("checkout-upsell", "new-checkout")

        result = service.evaluate("checkout-upsell", "u")
        assert result.reason is EvaluationReason.DEPENDENCY_NOT_MET
        assert result.value is True  # default value

        service.update_flag("new-checkout", "New Checkout", "", True)
        assert service.evaluate("checkout-upsell", "u").reason is EvaluationReason.DEFAULT

    def test_self_dependency(self, beta):
        with pytest.raises(InvalidDependencyError) as exc_info:
            beta.add_dependency("beta-feature", "beta-feature")
        assert exc_info.value.code is ErrorCode.INVALID_DEPENDENCY

    def test_missing_dependency(self, beta):
        with pytest.raises(FlagNotFoundError):
            beta.add_dependency("beta-feature", "ghost")

    def test_remove_dependency(self, service):
        service.create_flag("base", "Base", "", False)
        service.create_flag("child", "Child", "", True)
        service.add_dependency("child", "base")
        service.remove_dependency("child", "base")
        assert service.get_flag("child").dependencies == ()
        with pytest.raises(InvalidDependencyError):
            service.remove_dependency("child", "base")

    def test_deleted_dependency_is_unmet(self, service):
        service.create_flag("base", "Base", "", True)
        service.create_flag("child", "Child", "", True)
        service.add_dependency("child", "base")
        service.delete_flag("base")
        assert service.evaluate("child", "u").reason is EvaluationReason.DEPENDENCY_NOT_MET


class TestEvaluationHelpers:
    """Tests for batch, is_enabled and JSON values."""

    def test_evaluate_unknown(self, service):
        with pytest.raises(FlagNotFoundError):
            service.evaluate("missing", "u")

    def test_batch_skips_unknown(self, service):
        service.create_flag("a", "A", "", True)
        service.create_string_flag("b", "B", "", "blue")
        results = service.evaluate_batch(["a", "b", "missing"], "u")
        assert results == {"a": True, "b": "blue"}

    def test_is_enabled(self, beta):
        assert beta.is_enabled("beta-feature", "u") is False
        beta.update_flag("beta-feature", "Beta", "", True)
        assert beta.is_enabled("beta-feature", "u") is True
        assert beta.is_enabled("missing", "u") is False
        assert beta.is_enabled("missing", "u", default=True) is True

    def test_is_enabled_non_boolean(self, service):
        service.create_string_flag("s", "S", "", "true")
        assert service.is_enabled("s", "u") is False

    def test_json_flag(self, service):
        service.create_json_flag("api-config", "API Config", "", {"rate_limit": 100, "timeout": 30})
        service.add_property_rule(
            "api-config", "plan", "equals", "enterprise", {"rate_limit": 1000, "timeout": 60}
        )
        assert service.evaluate("api-config", "u", {"plan": "enterprise"}).value == {
            "rate_limit": 1000,
            "timeout": 60,
        }
        result = service.evaluate("api-config", "u", {"plan": "free"})
        result.value["rate_limit"] = 0
        assert service.get_flag("api-config").default_value["rate_limit"] == 100

    def test_result_to_dict(self, beta, now):
        data = beta.evaluate("beta-feature", "u", timestamp=now).to_dict()
        assert data["flag_key"] == "beta-feature"
        assert data["reason"] == "default"
        assert data["timestamp"] == now.isoformat()


class TestHistory:
    """Tests for the audit trail."""

    def test_lifecycle_history(self, beta):
        beta.enable_for_environment("beta-feature", "staging")
        beta.disable_flag("beta-feature")
        beta.delete_flag("beta-feature")

        entries = beta.get_history("beta-feature")
        assert [e.action for e in entries] == [
            ChangeAction.CREATED,
            ChangeAction.UPDATED,
            ChangeAction.UPDATED,
            ChangeAction.DELETED,
        ]
        assert entries[0].before is None
        assert entries[1].detail == "environment_enabled:staging"
        assert entries[2].before.enabled is True
        assert entries[2].after.enabled is False
        assert entries[3].after is None

    def test_failed_mutation_not_recorded(self, beta):
        with pytest.raises(FlagValidationError):
            beta.update_flag("beta-feature", "x", "", 42)
        assert len(beta.get_history("beta-feature")) == 1

    def test_evaluation_not_recorded(self, beta):
        beta.evaluate("beta-feature", "u")
        assert len(beta.get_history("beta-feature")) == 1

    def test_entry_timestamp_matches_flag(self, beta):
        after = beta.disable_flag("beta-feature")
        entries = beta.get_history("beta-feature")
        assert entries[0].timestamp == entries[0].after.created_at
        assert entries[1].timestamp == after.updated_at

    def test_concurrent_mutations_recorded_in_order(self, beta, monkeypatch):
        """Test each entry's before is the previous entry's after under contention."""
        record = beta.history.record
        first_call = threading.Event()

        def slow_record(*args, **kwargs):
            if not first_call.is_set():
                first_call.set()
                threading.Event().wait(0.05)
            return record(*args, **kwargs)

        monkeypatch.setattr(beta.history, "record", slow_record)

        enabler = threading.Thread(target=beta.enable_flag, args=("beta-feature",))
        enabler.start()
        assert first_call.wait(1)
        disabler = threading.Thread(target=beta.disable_flag, args=("beta-feature",))
        disabler.start()
        enabler.join()
        disabler.join()

        entries = beta.get_history("beta-feature")
        assert [e.detail for e in entries] == ["", "enabled", "disabled"]
        for previous, entry in zip(entries, entries[1:]):
            assert entry.before is previous.after
        assert entries[-1].after is beta.get_flag("beta-feature")


class TestMetrics:
    """Tests for in-process evaluation metrics."""

    def test_counts(self, beta):
        beta.add_property_rule("beta-feature", "plan", "equals", "premium", True)
        beta.evaluate("beta-feature", "a", {"plan": "premium"})
        beta.evaluate("beta-feature", "b", {"plan": "free"})
        beta.evaluate("beta-feature", "c", {"plan": "free"})

        metrics = beta.get_metrics("beta-feature")
        assert metrics.total_evaluations == 3
        assert metrics.reason_counts == {"rule_match": 1, "default": 2}
        assert metrics.last_evaluation is not None
        assert metrics.to_dict()["total_evaluations"] == 3

    def test_unknown_flag_has_no_metrics(self, service):
        assert service.get_metrics("missing") is None

    def test_metrics_are_copies(self, beta):
        beta.evaluate("beta-feature", "u")
        beta.get_metrics("beta-feature").reason_counts["default"] = 99
        assert beta.get_metrics("beta-feature").reason_counts["default"] == 1

    def test_all_metrics(self, service):
        service.create_flag("a", "A", "", True)
        service.create_flag("b", "B", "", True)
        service.evaluate_batch(["a", "b"], "u")
        assert set(service.get_all_metrics()) == {"a", "b"}

    def test_delete_drops_metrics(self, beta):
        beta.evaluate("beta-feature", "u")
        beta.delete_flag("beta-feature")
        assert beta.get_metrics("beta-feature") is None


class TestGlobalService:
    def test_singleton(self):
        assert get_flag_service() is get_flag_service()

    def test_reset(self):
        first = get_flag_service()
        first.create_flag("a", "A", "", True)
        reset_flag_service()
        assert get_flag_service() is not first
        assert get_flag_service().list_flags() == []

    def test_independent_instances(self):
        one = FeatureFlagService()
        one.create_flag("a", "A", "", True)
        assert FeatureFlagService().list_flags() == []


class TestServiceWiring:
    """Tests for how the service shares its collaborators."""

    def test_evaluator_shares_registry(self, service):
        assert service.evaluator.registry is service.registry
        service.create_flag("beta-feature", "Beta", "", True)
        assert service.evaluate("beta-feature", "U1").value is True

    def test_injected_empty_collaborators_are_kept(self):
        registry = FlagRegistry()
        history = ChangeHistory()
        service = FeatureFlagService(registry=registry, history=history)
        assert service.registry is registry
        assert service.history is history
        assert service.evaluator.registry is registry

        service.create_flag("beta-feature", "Beta", "", False)
        assert "beta-feature" in registry
        assert len(history.get("beta-feature")) == 1
