"""
Unit tests for Monte Carlo simulation engine.
"""
import math
import random
import threading
import time

import pytest
import numpy as np
from scipy import stats

from config_utils import EngineConfig
from guardrails import GuardrailAction, SpendingGoal
from simulation import (
    InvalidInput,
    InvalidParameter,
    MonteCarloSimulator,
    NumericDegenerate,
    PartTimeWork,
    PathState,
    SimulationCancelled,
    SimulationInput,
    SocialSecurity,
    normal_random,
    percentile,
    average,
    run_monte_carlo_simulations,
    run_single_simulation,
    simulate_year,
)


class ConstantRng:
    """Random source that always returns the same uniform draw"""

    def __init__(self, value=0.0):
        self.value = value

    def random(self):
        return self.value


def four_percent_input(**kwargs):
    defaults = dict(starting_portfolio=1_000_000, base_living_expense=40_000, years=30,
                    real_return=0.05, volatility=0.12)
    defaults.update(kwargs)
    return SimulationInput(**defaults)


class TestSimulationInput:
    """Test SimulationInput validation"""

    def test_valid_input(self):
        """Test that a typical input validates"""
        four_percent_input().validate()

    def test_zero_portfolio_rejected(self):
        """Test that a zero starting portfolio raises before any simulation"""
        sim_input = four_percent_input(starting_portfolio=0)
        with pytest.raises(InvalidInput, match="starting_portfolio"):
            run_monte_carlo_simulations(sim_input, 100, seed=1)

    @pytest.mark.parametrize("years", [0, -5, 2.5, True])
    def test_bad_years_rejected(self, years):
        """Test that years must be a positive integer"""
        with pytest.raises(InvalidInput, match="years"):
            four_percent_input(years=years).validate()

    @pytest.mark.parametrize("field_name", ["real_return", "volatility", "base_living_expense"])
    def test_non_finite_rejected(self, field_name):
        """Test that NaN and infinity are rejected with the field name"""
        with pytest.raises(InvalidInput, match=field_name):
            four_percent_input(**{field_name: float('nan')}).validate()
        with pytest.raises(InvalidInput, match=field_name):
            four_percent_input(**{field_name: float('inf')}).validate()

    def test_negative_volatility_rejected(self):
        """Test that volatility must be non-negative"""
        with pytest.raises(InvalidInput, match="volatility"):
            four_percent_input(volatility=-0.1).validate()

    def test_invalid_guardrails_rejected(self):
        """Test that guardrail threshold errors surface as InvalidInput"""
        from guardrails import GuardrailsConfig
        sim_input = four_percent_input(guardrails=GuardrailsConfig(lower_threshold=1.1))
        with pytest.raises(InvalidInput, match="threshold"):
            sim_input.validate()

    def test_goal_window_order_checked(self):
        """Test that a goal ending before it starts is rejected"""
        sim_input = four_percent_input(goals=[SpendingGoal(5_000, start_year=5, end_year=2)])
        with pytest.raises(InvalidInput, match="goals\\[0\\]"):
            sim_input.validate()

    def test_social_security_start_year_required(self):
        """Test that a missing Social Security start year is rejected as input"""
        sim_input = four_percent_input(social_security=SocialSecurity(start_year=None, annual_amount=10_000))
        with pytest.raises(InvalidInput, match="social_security.start_year"):
            sim_input.validate()

    def test_part_time_years_required(self):
        """Test that part-time work without a year count is rejected as input"""
        sim_input = four_percent_input(part_time_work=PartTimeWork(income=10_000, years=None))
        with pytest.raises(InvalidInput, match="part_time_work.years"):
            sim_input.validate()

    def test_goal_window_must_be_integer(self):
        """Test that a non-integer goal start year is rejected"""
        sim_input = four_percent_input(goals=[SpendingGoal(5_000, start_year="2")])
        with pytest.raises(InvalidInput, match="goals\\[0\\].start_year"):
            sim_input.validate()

    def test_missing_guardrail_threshold_rejected(self):
        """Test that a None guardrail threshold surfaces as InvalidInput"""
        from guardrails import GuardrailsConfig
        sim_input = four_percent_input(guardrails=GuardrailsConfig(lower_threshold=None))
        with pytest.raises(InvalidInput, match="guardrails.lower_threshold"):
            sim_input.validate()

    def test_goals_stored_as_tuple(self):
        """Test that goals given as a list become an immutable tuple"""
        sim_input = four_percent_input(goals=[SpendingGoal(5_000)])
        assert isinstance(sim_input.goals, tuple)
        assert sim_input.total_annual_spending == 45_000

    def test_from_annual_spending(self):
        """Test single-figure constructor puts everything in base expense"""
        sim_input = SimulationInput.from_annual_spending(500_000, 25_000, 20, 0.04, 0.1)
        assert sim_input.base_living_expense == 25_000
        assert sim_input.goals == ()


class TestNormalRandom:
    """Test Box-Muller return generator"""

    def test_zero_draw_returns_mean(self):
        """Test that u1 = 1 - 0 gives z = 0 and never log(0)"""
        assert normal_random(0.05, 0.12, ConstantRng(0.0)) == pytest.approx(0.05)

    def test_non_finite_parameters(self):
        """Test that non-finite mean or std_dev raise InvalidParameter"""
        with pytest.raises(InvalidParameter):
            normal_random(float('nan'), 0.1)
        with pytest.raises(InvalidParameter):
            normal_random(0.05, float('inf'))
        assert issubclass(InvalidParameter, InvalidInput)

    def test_accepts_stdlib_random(self):
        """Test that any object with random() can drive the generator"""
        first = normal_random(0.0, 1.0, random.Random(3))
        second = normal_random(0.0, 1.0, random.Random(3))
        assert first == second

    def test_distribution_matches_normal(self):
        """Test sampled values are consistent with Normal(mean, std_dev)"""
        rng = np.random.default_rng(123)
        samples = [normal_random(0.05, 0.12, rng) for _ in range(5000)]

        assert np.mean(samples) == pytest.approx(0.05, abs=0.01)
        assert np.std(samples) == pytest.approx(0.12, abs=0.01)
        assert stats.kstest(samples, 'norm', args=(0.05, 0.12)).pvalue > 0.001


class TestSimulateYear:
    """Test the per-year step function"""

    def test_step_ordering(self):
        """Test growth, then income, then withdrawal"""
        sim_input = four_percent_input(
            social_security=SocialSecurity(start_year=0, annual_amount=20_000),
            part_time_work=PartTimeWork(income=10_000, years=2),
        )
        state = PathState.start(sim_input.starting_portfolio)
        year_result, failed = simulate_year(sim_input, state, 0, 0.10)

        assert not failed
        assert year_result.start_balance == 1_000_000
        assert year_result.ss_income == 20_000
        assert year_result.work_income == 10_000
        assert year_result.income == 30_000
        assert year_result.spending == 40_000
        assert year_result.end_balance == pytest.approx(1_100_000 + 30_000 - 40_000)
        assert state.balance == year_result.end_balance

    def test_social_security_never_stops(self):
        """Test Social Security pays from start_year onwards"""
        sim_input = four_percent_input(social_security=SocialSecurity(start_year=3, annual_amount=20_000))
        state = PathState.start(sim_input.starting_portfolio)
        incomes = [simulate_year(sim_input, state, year, 0.0)[0].ss_income for year in range(6)]
        assert incomes == [0, 0, 0, 20_000, 20_000, 20_000]

    def test_part_time_work_first_years_only(self):
        """Test part-time income is paid in years [0, years)"""
        sim_input = four_percent_input(part_time_work=PartTimeWork(income=15_000, years=2))
        state = PathState.start(sim_input.starting_portfolio)
        incomes = [simulate_year(sim_input, state, year, 0.0)[0].work_income for year in range(4)]
        assert incomes == [15_000, 15_000, 0, 0]

    def test_goal_activation_window(self):
        """Test goals are active on inclusive [start_year, end_year]"""
        goal = SpendingGoal(annual_amount=10_000, start_year=2, end_year=4, name="Travel")
        sim_input = four_percent_input(goals=[goal])
        state = PathState.start(sim_input.starting_portfolio)
        goal_spending = [simulate_year(sim_input, state, year, 0.0)[0].goals_spending for year in range(6)]
        assert goal_spending == [0, 0, 10_000, 10_000, 10_000, 0]

    def test_failure_clamps_to_zero(self):
        """Test the failing year records a zero end balance"""
        sim_input = four_percent_input(starting_portfolio=50_000)
        state = PathState.start(sim_input.starting_portfolio)
        simulate_year(sim_input, state, 0, 0.0)
        year_result, failed = simulate_year(sim_input, state, 1, 0.0)

        assert failed
        assert year_result.end_balance == 0.0
        assert state.lowest_balance == 0.0
        assert state.lowest_balance_year == 1

    def test_non_finite_balance_raises(self):
        """Test NaN/Infinity mid-simulation raises NumericDegenerate"""
        sim_input = four_percent_input()
        state = PathState.start(sim_input.starting_portfolio)
        with pytest.raises(NumericDegenerate):
            simulate_year(sim_input, state, 0, float('inf'))


class TestSingleSimulation:
    """Test single path simulation"""

    def test_injected_rng_is_deterministic(self):
        """Test that the same seed reproduces the same path"""
        sim_input = four_percent_input()
        first = run_single_simulation(sim_input, True, np.random.default_rng(7))
        second = run_single_simulation(sim_input, True, np.random.default_rng(7))

        assert first.ending_balance == second.ending_balance
        assert [yr.annual_return for yr in first.year_by_year] == \
            [yr.annual_return for yr in second.year_by_year]

    def test_constant_returns(self):
        """Test a path with every return at the mean"""
        sim_input = four_percent_input(years=3, real_return=0.0)
        result = run_single_simulation(sim_input, True, ConstantRng(0.0))

        assert result.success
        assert result.years_lasted == 3
        assert result.ending_balance == pytest.approx(880_000)
        assert result.lowest_balance == pytest.approx(880_000)
        assert result.lowest_balance_year == 2
        assert len(result.year_by_year) == 3

    def test_failed_path(self):
        """Test a depleted path reports years lasted and partial detail"""
        sim_input = four_percent_input(starting_portfolio=100_000, real_return=0.0)
        result = run_single_simulation(sim_input, True, ConstantRng(0.0))

        assert not result.success
        assert result.years_lasted == 3
        assert result.ending_balance == 0.0
        assert result.lowest_balance_year == 2
        assert len(result.year_by_year) == 3

    def test_detail_optional(self):
        """Test year-by-year detail is omitted unless requested"""
        result = run_single_simulation(four_percent_input(), rng=np.random.default_rng(1))
        assert result.year_by_year is None

    def test_balances_never_negative(self):
        """Test recorded balances stay non-negative across many paths"""
        sim_input = four_percent_input(base_living_expense=70_000, volatility=0.25)
        rng = np.random.default_rng(11)
        for _ in range(50):
            result = run_single_simulation(sim_input, True, rng)
            assert result.ending_balance >= 0
            assert all(yr.end_balance >= 0 for yr in result.year_by_year)


class TestHelpers:
    """Test aggregation helpers"""

    def test_nearest_rank_percentile(self):
        """Test percentile uses index floor(n * p) clamped"""
        values = [10, 20, 30, 40]
        assert percentile(values, 0.5) == 30
        assert percentile(values, 0.1) == 10
        assert percentile(values, 0.9) == 40
        assert percentile(values, 1.0) == 40
        assert percentile([], 0.5) == 0.0

    def test_average(self):
        """Test arithmetic mean and empty input"""
        assert average([1, 2, 3]) == 2.0
        assert average([]) == 0.0


class TestMonteCarlo:
    """Test Monte Carlo aggregation"""

    def test_seeded_runs_reproducible(self):
        """Test the same seed gives identical aggregated results"""
        sim_input = four_percent_input()
        first = run_monte_carlo_simulations(sim_input, 200, seed=42)
        second = run_monte_carlo_simulations(sim_input, 200, seed=42)

        assert first.success_rate == second.success_rate
        assert first.success.median_ending_balance == second.success.median_ending_balance
        assert first.seed == 42

    def test_unseeded_run_reports_entropy(self):
        """Test a fresh-entropy run reports the seed it used"""
        sim_input = four_percent_input(years=5)
        first = run_monte_carlo_simulations(sim_input, 50)
        replay = run_monte_carlo_simulations(sim_input, 50, seed=first.seed)
        assert first.seed is not None
        assert first.success.median_ending_balance == replay.success.median_ending_balance

    def test_result_bounds(self):
        """Test success rate and percentile ordering invariants"""
        results = run_monte_carlo_simulations(four_percent_input(base_living_expense=55_000), 500, seed=3)

        assert 0.0 <= results.success_rate <= 1.0
        assert results.success.count + results.failure.count == results.iterations
        assert results.success_rate == results.success.count / 500
        assert results.success.p10_ending_balance <= results.success.median_ending_balance
        assert results.success.median_ending_balance <= results.success.p90_ending_balance
        assert results.failure.count > 0
        assert results.failure.worst_case <= results.failure.median_years_lasted
        assert results.risk.average_lowest_balance >= 0

    def test_sample_paths_limited(self):
        """Test only the first sample_count paths keep detail"""
        results = run_monte_carlo_simulations(four_percent_input(), 100, seed=5)
        assert len(results.sample_paths) == 10
        assert all(len(path) > 0 for path in results.sample_paths)

        few = run_monte_carlo_simulations(four_percent_input(), 3, seed=5)
        assert len(few.sample_paths) == 3

    def test_no_failures_worst_case_is_horizon(self):
        """Test worst case defaults to the horizon when nothing fails"""
        sim_input = four_percent_input(base_living_expense=1_000, volatility=0.0)
        results = run_monte_carlo_simulations(sim_input, 20, seed=1)
        assert results.success_rate == 1.0
        assert results.failure.worst_case == sim_input.years
        assert results.failure.average_years_lasted == 0.0

    def test_invalid_iterations(self):
        """Test iterations must be a positive integer"""
        with pytest.raises(InvalidInput, match="iterations"):
            run_monte_carlo_simulations(four_percent_input(), 0)

    def test_numeric_degenerate_aborts_run(self):
        """Test overflow to infinity aborts the run naming the path"""
        sim_input = four_percent_input(real_return=1e308, volatility=0.0)
        with pytest.raises(NumericDegenerate, match="path 0"):
            run_monte_carlo_simulations(sim_input, 10, seed=1)

    def test_thread_pool_matches_sequential(self):
        """Test parallel execution gives identical results for a seed"""
        sim_input = four_percent_input()
        sequential = run_monte_carlo_simulations(sim_input, 300, seed=9)
        threaded = run_monte_carlo_simulations(sim_input, 300, seed=9, parallel=True,
                                               executor="thread", max_workers=4)

        assert sequential.success_rate == threaded.success_rate
        assert sequential.success.median_ending_balance == threaded.success.median_ending_balance
        assert [p[-1].end_balance for p in sequential.sample_paths] == \
            [p[-1].end_balance for p in threaded.sample_paths]

    def test_process_pool_matches_sequential(self):
        """Test process pool execution gives identical results for a seed"""
        sim_input = four_percent_input(years=10)
        sequential = run_monte_carlo_simulations(sim_input, 100, seed=21)
        pooled = run_monte_carlo_simulations(sim_input, 100, seed=21, parallel=True, max_workers=2)

        assert sequential.success_rate == pooled.success_rate
        assert sequential.risk.average_lowest_balance == pytest.approx(pooled.risk.average_lowest_balance)

    def test_cancel_event(self):
        """Test a set cancellation event stops the run"""
        event = threading.Event()
        event.set()
        with pytest.raises(SimulationCancelled):
            run_monte_carlo_simulations(four_percent_input(), 100, seed=1, cancel_event=event)

    def test_deadline(self):
        """Test an expired deadline stops the run"""
        with pytest.raises(SimulationCancelled):
            run_monte_carlo_simulations(four_percent_input(), 100, seed=1,
                                        deadline=time.monotonic() - 1)

    def test_debug_output(self, capsys):
        """Test debug diagnostics are printed only when requested"""
        run_monte_carlo_simulations(four_percent_input(years=5), 10, seed=1)
        assert capsys.readouterr().out == ""

        run_monte_carlo_simulations(four_percent_input(years=5), 10, seed=1, debug=True)
        assert "DEBUG [run_monte_carlo_simulations]" in capsys.readouterr().out


class TestBenchmarkScenarios:
    """Classical withdrawal-rule benchmarks"""

    def test_four_percent_rule(self):
        """Test 4% withdrawals over 30 years succeed roughly 85-90% of the time"""
        results = run_monte_carlo_simulations(four_percent_input(), 10_000, seed=2024)
        assert 0.82 <= results.success_rate <= 0.93

    def test_three_percent_rule(self):
        """Test 3% withdrawals over 30 years succeed roughly 95-99% of the time"""
        results = run_monte_carlo_simulations(four_percent_input(base_living_expense=30_000),
                                              10_000, seed=2024)
        assert 0.93 <= results.success_rate <= 0.995


class TestMonteCarloSimulator:
    """Test the configured simulator wrapper"""

    def test_validates_on_construction(self):
        """Test bad inputs fail when the simulator is created"""
        with pytest.raises(InvalidInput):
            MonteCarloSimulator(four_percent_input(years=0))

    def test_uses_engine_config(self):
        """Test iterations, seed and sample count come from EngineConfig"""
        config = EngineConfig(iterations=120, sample_count=4, random_seed=8)
        simulator = MonteCarloSimulator(four_percent_input(), config)
        results = simulator.run_simulation()

        assert results.iterations == 120
        assert len(results.sample_paths) == 4
        assert results.seed == 8
        assert simulator.run_simulation().success_rate == results.success_rate

    def test_run_path(self):
        """Test single path with detail"""
        simulator = MonteCarloSimulator(four_percent_input(years=12), EngineConfig(random_seed=1))
        result = simulator.run_path()
        assert len(result.year_by_year) == result.years_lasted
        assert all(yr.guardrail is GuardrailAction.NONE for yr in result.year_by_year)
        assert math.isfinite(result.ending_balance)
