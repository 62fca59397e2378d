"""Tests for rule management and the suggestion pool."""

import pytest

from conftest import make_transaction
from ledger_learning.config import RuleConfig
from ledger_learning.rules import RuleManager, RuleNotFoundError
from ledger_learning.schemas import RuleSource

SHELL_CONDITION = {"field": "merchantName", "operator": "contains", "value": "shell"}
GAS_ACTION = {"type": "setCategory", "value": "Gas"}


@pytest.fixture
def manager(store):
    return RuleManager(store, RuleConfig())


@pytest.fixture
def manager_with_corrections(store, shell_corrections):
    for correction in shell_corrections:
        store.add_correction(correction)
    return RuleManager(store, RuleConfig())


class TestRuleCrud:
    """Tests for create/update/delete."""

    def test_create_rule(self, manager):
        rule = manager.create_rule("Shell is gas", [SHELL_CONDITION], GAS_ACTION)

        assert rule.confidence == 1.0
        assert rule.source == RuleSource.USER
        stored = manager.get_all_rules()
        assert [r.id for r in stored] == [rule.id]
        assert stored[0].signature() == rule.signature()

    def test_create_rule_requires_conditions(self, manager):
        with pytest.raises(ValueError):
            manager.create_rule("Empty", [], GAS_ACTION)

    def test_update_rule(self, manager):
        rule = manager.create_rule("Shell", [SHELL_CONDITION], GAS_ACTION)
        manager.update_rule(rule.id, name="Shell stations", confidence=0.7)

        stored = manager.get_rule(rule.id)
        assert stored.name == "Shell stations"
        assert stored.confidence == pytest.approx(0.7)

    def test_update_unknown_rule(self, manager):
        with pytest.raises(RuleNotFoundError):
            manager.update_rule("missing", name="x")

    def test_not_found_is_key_error(self, manager):
        with pytest.raises(KeyError):
            manager.update_rule("missing", name="x")

    def test_delete_rule(self, manager):
        rule = manager.create_rule("Shell", [SHELL_CONDITION], GAS_ACTION)
        assert manager.delete_rule(rule.id) is True
        assert manager.delete_rule(rule.id) is False
        assert manager.get_all_rules() == []


class TestApplyAndTest:
    """Tests for applying and dry-running rules."""

    def test_apply_rules_persists(self, manager, store):
        manager.create_rule("Shell", [SHELL_CONDITION], GAS_ACTION)
        tx = make_transaction("tx-9", "SHELL OIL 57442", "40.00", merchant_name="Shell")

        resolution = manager.apply_rules(tx)

        assert tx.category == "Gas"
        assert tx.classification_confidence == 1.0
        assert resolution.conflicts == []
        stored = store.get_transaction("tx-9")
        assert stored.category == "Gas"
        assert stored.applied_rules == tx.applied_rules

    def test_test_rule_samples(self, manager, store):
        for i in range(12):
            store.upsert_transaction(
                make_transaction(f"shell-{i}", "SHELL OIL", "40.00", merchant_name="Shell")
            )
        store.upsert_transaction(make_transaction("other", "NETFLIX", merchant_name="Netflix"))

        result = manager.test_rule([SHELL_CONDITION])

        assert result.match_count == 12
        assert len(result.sample_matches) == 10
        assert all(t.merchant_name == "Shell" for t in result.sample_matches)

    def test_test_rule_does_not_mutate(self, manager, store):
        store.upsert_transaction(make_transaction("s", "SHELL", merchant_name="Shell"))
        manager.test_rule([SHELL_CONDITION], GAS_ACTION)
        assert store.get_transaction("s").category is None


class TestSuggestionPool:
    """Tests for suggestion analysis, acceptance and rejection."""

    def test_analyze(self, manager_with_corrections):
        suggestions = manager_with_corrections.analyze_corrections_for_rule_suggestions()
        assert suggestions
        assert manager_with_corrections.get_rule_suggestions()[0].id == suggestions[0].id

    def test_accept_keeps_confidence(self, manager_with_corrections):
        manager = manager_with_corrections
        top = manager.analyze_corrections_for_rule_suggestions()[0]

        rule = manager.accept_suggestion(top.id)

        assert rule.confidence == pytest.approx(top.confidence)
        assert rule.source == RuleSource.SUGGESTION
        assert rule.signature() == top.signature()
        assert top.id not in [s.id for s in manager.get_rule_suggestions()]
        assert [r.id for r in manager.get_all_rules()] == [rule.id]

    def test_existing_rules_not_suggested_again(self, manager_with_corrections):
        manager = manager_with_corrections
        top = manager.analyze_corrections_for_rule_suggestions()[0]
        manager.accept_suggestion(top.id)

        refreshed = manager.analyze_corrections_for_rule_suggestions()

        assert top.signature() not in [s.signature() for s in refreshed]

    def test_short_pool_refilled_after_accept(self, store, shell_corrections):
        """Accepted suggestions leave room for the next-ranked ones."""
        for correction in shell_corrections:
            store.add_correction(correction)
        manager = RuleManager(store, RuleConfig(max_suggestions_per_session=1))
        [top] = manager.analyze_corrections_for_rule_suggestions()
        manager.accept_suggestion(top.id)

        refreshed = manager.analyze_corrections_for_rule_suggestions()

        assert len(refreshed) == 1
        assert refreshed[0].signature() != top.signature()

    def test_reject(self, manager_with_corrections):
        manager = manager_with_corrections
        top = manager.analyze_corrections_for_rule_suggestions()[0]

        assert manager.reject_suggestion(top.id) is True
        assert manager.reject_suggestion(top.id) is False
        assert manager.get_all_rules() == []

    def test_accept_unknown(self, manager):
        assert manager.accept_suggestion("nope") is None
