import pytest

from core.error_budget import (
    DEFAULT_THRESHOLDS,
    BudgetCategory,
    CorrectiveDirective,
    ErrorBudget,
)


class TestErrorBudget:
    def test_default_thresholds(self):
        budget = ErrorBudget()
        assert budget.thresholds == DEFAULT_THRESHOLDS
        assert budget.thresholds[BudgetCategory.DEPOSIT_VERIFICATION] == 5
        assert budget.thresholds[BudgetCategory.SPIN] == 3
        assert budget.thresholds[BudgetCategory.WALK] == 5

    def test_threshold_override(self):
        budget = ErrorBudget(thresholds={BudgetCategory.SPIN: 1})
        budget.record(BudgetCategory.SPIN, False)
        assert budget.should_trip(BudgetCategory.SPIN)

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            ErrorBudget(thresholds={BudgetCategory.WALK: 0})

    def test_failures_accumulate_until_threshold(self):
        budget = ErrorBudget()
        for expected in (1, 2):
            assert budget.record(BudgetCategory.SPIN, False) == expected
            assert not budget.should_trip(BudgetCategory.SPIN)
        budget.record(BudgetCategory.SPIN, False)
        assert budget.should_trip(BudgetCategory.SPIN)

    def test_success_clears_only_its_category(self):
        budget = ErrorBudget()
        budget.record(BudgetCategory.SPIN, False)
        budget.record(BudgetCategory.SPIN, False)
        budget.record(BudgetCategory.WALK, False)
        assert budget.record(BudgetCategory.SPIN, True) == 0
        assert budget.count(BudgetCategory.WALK) == 1

    def test_interleaved_success_prevents_trip(self):
        budget = ErrorBudget()
        for _ in range(10):
            budget.record(BudgetCategory.SPIN, False)
            budget.record(BudgetCategory.SPIN, False)
            budget.record(BudgetCategory.SPIN, True)
        assert not budget.should_trip(BudgetCategory.SPIN)

    def test_deposit_trip_rotates_and_refreshes(self):
        budget = ErrorBudget()
        budget.record(BudgetCategory.WALK, False)
        for _ in range(5):
            budget.record(BudgetCategory.DEPOSIT_VERIFICATION, False)
        directive = budget.trip(BudgetCategory.DEPOSIT_VERIFICATION)
        assert directive == CorrectiveDirective(
            category=BudgetCategory.DEPOSIT_VERIFICATION,
            rotate_seed=True,
            hard_refresh=True,
            reset_streak=True,
        )
        assert budget.count(BudgetCategory.DEPOSIT_VERIFICATION) == 0
        assert budget.count(BudgetCategory.WALK) == 1

    def test_spin_trip_rotates_and_refreshes(self):
        budget = ErrorBudget()
        directive = budget.trip(BudgetCategory.SPIN)
        assert directive.rotate_seed and directive.hard_refresh
        assert directive.cool_down_seconds == 0

    def test_walk_trip_cools_down_and_resets_everything(self):
        budget = ErrorBudget(cool_down_seconds=300)
        budget.record(BudgetCategory.SPIN, False)
        for _ in range(5):
            budget.record(BudgetCategory.WALK, False)
        directive = budget.trip(BudgetCategory.WALK)
        assert directive.cool_down_seconds == 300
        assert directive.reset_all_counters
        assert not directive.rotate_seed
        assert all(count == 0 for count in budget.counts.values())

    def test_reset_all(self):
        budget = ErrorBudget()
        for category in BudgetCategory:
            budget.record(category, False)
        budget.reset_all()
        assert all(count == 0 for count in budget.counts.values())
