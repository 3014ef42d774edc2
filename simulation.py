"""
Monte Carlo retirement simulation engine with guardrails and goal-based spending.
Pure functions for simulation logic, decoupled from any UI or storage.
"""
import math
import os
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config_utils import EngineConfig
from guardrails import (
    GuardrailAction,
    GuardrailsConfig,
    SpendingGoal,
    apply_guardrails,
    essential_floor_for_year,
    target_spending_for_year,
    validate_guardrails,
)

# Number of paths per run that keep full year-by-year detail
SAMPLE_PATH_COUNT = 10


class InvalidInput(ValueError):
    """Malformed simulation input; raised before any simulation work starts"""


class InvalidParameter(InvalidInput):
    """Non-finite parameters passed to the return generator"""


class NumericDegenerate(ArithmeticError):
    """NaN or Infinity appeared mid-simulation; the aggregate run is aborted"""


class SimulationCancelled(RuntimeError):
    """Cancellation event was set or the deadline passed"""


@dataclass(frozen=True)
class SocialSecurity:
    """Income starting at a simulated year index and continuing thereafter"""
    start_year: int
    annual_amount: float


@dataclass(frozen=True)
class PartTimeWork:
    """Income received in years [0, years)"""
    income: float
    years: int


@dataclass(frozen=True)
class SimulationInput:
    """Fully resolved inputs for one simulation run (annual, real dollars)"""
    starting_portfolio: float
    base_living_expense: float
    years: int
    real_return: float
    volatility: float
    goals: Tuple[SpendingGoal, ...] = ()
    social_security: Optional[SocialSecurity] = None
    part_time_work: Optional[PartTimeWork] = None
    essential_floor: Optional[float] = None
    spending_ceiling: Optional[float] = None
    guardrails: Optional[GuardrailsConfig] = None

    def __post_init__(self):
        # Accept any iterable of goals but store an immutable tuple
        if not isinstance(self.goals, tuple):
            object.__setattr__(self, 'goals', tuple(self.goals or ()))

    @classmethod
    def from_annual_spending(cls, starting_portfolio: float, annual_spending: float,
                             years: int, real_return: float, volatility: float,
                             **kwargs) -> 'SimulationInput':
        """Single-spending-figure input: the whole amount is base living expense, no goals"""
        return cls(starting_portfolio=starting_portfolio,
                   base_living_expense=annual_spending,
                   years=years,
                   real_return=real_return,
                   volatility=volatility,
                   **kwargs)

    @property
    def total_annual_spending(self) -> float:
        """Base expense plus every goal amount, ignoring activation windows"""
        return self.base_living_expense + sum(g.annual_amount for g in self.goals)

    def validate(self) -> None:
        """Raise InvalidInput describing the first malformed field"""
        _require_finite('starting_portfolio', self.starting_portfolio)
        if self.starting_portfolio <= 0:
            # Guardrail ratios divide by the starting balance
            raise InvalidInput(f"starting_portfolio must be positive, got {self.starting_portfolio}")

        _require_finite('base_living_expense', self.base_living_expense)
        if self.base_living_expense < 0:
            raise InvalidInput(f"base_living_expense must be non-negative, got {self.base_living_expense}")

        _require_int('years', self.years)
        if self.years < 1:
            raise InvalidInput(f"years must be at least 1, got {self.years}")

        _require_finite('real_return', self.real_return)
        _require_finite('volatility', self.volatility)
        if self.volatility < 0:
            raise InvalidInput(f"volatility must be non-negative, got {self.volatility}")

        for i, goal in enumerate(self.goals):
            _require_finite(f'goals[{i}].annual_amount', goal.annual_amount)
            for bound in ('start_year', 'end_year'):
                if getattr(goal, bound) is not None:
                    _require_int(f'goals[{i}].{bound}', getattr(goal, bound))
            if goal.annual_amount < 0:
                raise InvalidInput(f"goals[{i}].annual_amount must be non-negative")
            if (goal.start_year is not None and goal.end_year is not None
                    and goal.start_year > goal.end_year):
                raise InvalidInput(f"goals[{i}] start_year {goal.start_year} is after end_year {goal.end_year}")

        if self.social_security is not None:
            _require_finite('social_security.annual_amount', self.social_security.annual_amount)
            _require_int('social_security.start_year', self.social_security.start_year)
            if self.social_security.start_year < 0:
                raise InvalidInput("social_security.start_year must be non-negative")

        if self.part_time_work is not None:
            _require_finite('part_time_work.income', self.part_time_work.income)
            _require_int('part_time_work.years', self.part_time_work.years)
            if self.part_time_work.years < 0:
                raise InvalidInput("part_time_work.years must be non-negative")

        for name in ('essential_floor', 'spending_ceiling'):
            value = getattr(self, name)
            if value is not None:
                _require_finite(name, value)
                if value < 0:
                    raise InvalidInput(f"{name} must be non-negative, got {value}")

        if self.guardrails is not None:
            for name in ('upper_threshold', 'lower_threshold', 'increase_percent', 'decrease_percent'):
                _require_finite(f'guardrails.{name}', getattr(self.guardrails, name))
            try:
                validate_guardrails(self.guardrails)
            except ValueError as e:
                raise InvalidInput(str(e)) from e


def _require_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidInput(f"{name} must be an integer, got {value!r}")


def _require_finite(name: str, value: Any) -> None:
    if value is None:
        raise InvalidInput(f"{name} is required")
    try:
        ok = math.isfinite(value)
    except TypeError:
        raise InvalidInput(f"{name} must be a number, got {value!r}") from None
    if not ok:
        raise InvalidInput(f"{name} must be finite, got {value}")


@dataclass
class YearResult:
    """One simulated year of a sample path"""
    year: int
    start_balance: float
    annual_return: float
    spending: float
    base_spending: float
    goals_spending: float
    ss_income: float
    work_income: float
    end_balance: float
    guardrail: GuardrailAction
    spending_multiplier: float = 1.0

    @property
    def income(self) -> float:
        return self.ss_income + self.work_income


@dataclass
class SimulationResult:
    """Outcome of one simulated path"""
    success: bool
    ending_balance: float
    years_lasted: int
    lowest_balance: float
    lowest_balance_year: int
    year_by_year: Optional[List[YearResult]] = None


@dataclass
class SuccessStats:
    count: int
    median_ending_balance: float
    p10_ending_balance: float
    p90_ending_balance: float


@dataclass
class FailureStats:
    count: int
    average_years_lasted: float
    median_years_lasted: float
    worst_case: int


@dataclass
class GuardrailTriggerStats:
    ceiling_trigger_percent: float
    floor_trigger_percent: float


@dataclass
class RiskStats:
    average_lowest_balance: float
    percent_hitting_floor: float
    guardrail_trigger_stats: GuardrailTriggerStats


@dataclass
class AggregatedResults:
    """Results from a Monte Carlo run"""
    success_rate: float
    iterations: int
    success: SuccessStats
    failure: FailureStats
    risk: RiskStats
    sample_paths: List[List[YearResult]] = field(default_factory=list)
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PathState:
    """
    Mutable state of a single path, threaded through ``simulate_year``.

    Created fresh for every path; the spending multiplier is never shared.
    """
    balance: float
    spending_multiplier: float = 1.0
    lowest_balance: float = 0.0
    lowest_balance_year: int = 0

    @classmethod
    def start(cls, starting_portfolio: float) -> 'PathState':
        return cls(balance=starting_portfolio, spending_multiplier=1.0,
                   lowest_balance=starting_portfolio, lowest_balance_year=0)


def normal_random(mean: float, std_dev: float, rng=None) -> float:
    """
    Draw from Normal(mean, std_dev) with the Box-Muller transform.

    Args:
        mean: Distribution mean
        std_dev: Distribution standard deviation
        rng: Object with a ``random()`` method returning floats in [0, 1);
            a fresh numpy Generator when omitted

    Returns:
        One sampled value
    """
    if not (math.isfinite(mean) and math.isfinite(std_dev)):
        raise InvalidParameter(f"mean and std_dev must be finite, got {mean}, {std_dev}")
    if rng is None:
        rng = np.random.default_rng()
    u1 = 1.0 - rng.random()  # (0, 1], keeps log() finite
    u2 = rng.random()
    z0 = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
    return mean + std_dev * z0


def simulate_year(sim_input: SimulationInput, state: PathState, year: int,
                  annual_return: float) -> Tuple[YearResult, bool]:
    """
    Advance a path by one year given an already-sampled return.

    Order: growth, Social Security, part-time work, guardrails, withdrawal.
    ``state`` is updated in place.

    Returns:
        (year_result, failed)
    """
    start_balance = state.balance

    # 1. Apply return
    balance = start_balance * (1 + annual_return)

    # 2. Social Security, once started never stops
    ss_income = 0.0
    ss = sim_input.social_security
    if ss is not None and year >= ss.start_year:
        ss_income = ss.annual_amount

    # 3. Part-time work for the first N years
    work_income = 0.0
    work = sim_input.part_time_work
    if work is not None and year < work.years:
        work_income = work.income

    balance += ss_income + work_income

    # 4-5. Target spending, then guardrails against the pre-withdrawal balance
    base_spending, goals_spending = target_spending_for_year(
        sim_input.base_living_expense, sim_input.goals, year)
    floor = essential_floor_for_year(
        sim_input.base_living_expense, sim_input.goals, year, sim_input.essential_floor)
    decision = apply_guardrails(
        balance=balance,
        initial_balance=sim_input.starting_portfolio,
        target_spending=base_spending + goals_spending,
        essential_floor=floor,
        guardrails=sim_input.guardrails,
        multiplier=state.spending_multiplier,
        spending_ceiling=sim_input.spending_ceiling,
    )
    state.spending_multiplier = decision.multiplier

    # 6. Withdraw
    balance -= decision.spending

    if not math.isfinite(balance):
        raise NumericDegenerate(f"non-finite balance {balance} in year {year}")

    # 7-8. Failure check and low-water mark
    failed = balance <= 0
    if failed:
        state.balance = 0.0
        state.lowest_balance = 0.0
        state.lowest_balance_year = year
    else:
        state.balance = balance
        if balance < state.lowest_balance:
            state.lowest_balance = balance
            state.lowest_balance_year = year

    year_result = YearResult(
        year=year,
        start_balance=start_balance,
        annual_return=annual_return,
        spending=decision.spending,
        base_spending=base_spending,
        goals_spending=goals_spending,
        ss_income=ss_income,
        work_income=work_income,
        end_balance=state.balance,
        guardrail=decision.action,
        spending_multiplier=decision.multiplier,
    )
    return year_result, failed


def _simulate_path(sim_input: SimulationInput, include_year_by_year: bool, rng,
                   path_index: Optional[int] = None) -> SimulationResult:
    """Run one path without re-validating the input"""
    state = PathState.start(sim_input.starting_portfolio)
    year_results: Optional[List[YearResult]] = [] if include_year_by_year else None

    for year in range(sim_input.years):
        annual_return = normal_random(sim_input.real_return, sim_input.volatility, rng)
        try:
            year_result, failed = simulate_year(sim_input, state, year, annual_return)
        except NumericDegenerate as e:
            if path_index is None:
                raise
            raise NumericDegenerate(f"path {path_index}: {e}") from e

        if year_results is not None:
            year_results.append(year_result)

        if failed:
            return SimulationResult(
                success=False,
                ending_balance=0.0,
                years_lasted=year + 1,
                lowest_balance=0.0,
                lowest_balance_year=year,
                year_by_year=year_results,
            )

    return SimulationResult(
        success=True,
        ending_balance=state.balance,
        years_lasted=sim_input.years,
        lowest_balance=state.lowest_balance,
        lowest_balance_year=state.lowest_balance_year,
        year_by_year=year_results,
    )


def run_single_simulation(sim_input: SimulationInput,
                          include_year_by_year: bool = False,
                          rng=None) -> SimulationResult:
    """
    Simulate one retirement path.

    Args:
        sim_input: Simulation inputs
        include_year_by_year: Keep per-year detail in the result
        rng: Random source with a ``random()`` method; inject a seeded one for reproducibility

    Returns:
        SimulationResult for the path
    """
    sim_input.validate()
    if rng is None:
        rng = np.random.default_rng()
    return _simulate_path(sim_input, include_year_by_year, rng)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an ascending sequence (index floor(n * p), clamped)"""
    if len(sorted_values) == 0:
        return 0.0
    index = int(math.floor(len(sorted_values) * p))
    index = min(max(index, 0), len(sorted_values) - 1)
    return sorted_values[index]


def average(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def _check_cancelled(cancel_event=None, deadline: Optional[float] = None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SimulationCancelled("simulation cancelled")
    if deadline is not None and time.monotonic() >= deadline:
        raise SimulationCancelled("simulation deadline exceeded")


def _resolve_max_workers(max_workers: Optional[int], iterations: int) -> int:
    if max_workers is None:
        max_workers = os.cpu_count() or 1
    return max(1, min(max_workers, iterations))


def _chunk(items: Sequence[Any], size: int) -> List[Tuple[int, Sequence[Any]]]:
    """Split into (start_index, batch) pairs"""
    return [(start, items[start:start + size]) for start in range(0, len(items), size)]


def _run_batch(sim_input: SimulationInput,
               seed_batch: Sequence[np.random.SeedSequence],
               start_index: int,
               detail_count: int) -> List[SimulationResult]:
    """Worker entry point: one independent generator per seed, picklable signature"""
    results = []
    for offset, seq in enumerate(seed_batch):
        index = start_index + offset
        rng = np.random.default_rng(seq)
        results.append(_simulate_path(sim_input, index < detail_count, rng, path_index=index))
    return results


def aggregate_results(sim_input: SimulationInput,
                      results: List[SimulationResult],
                      iterations: int,
                      sample_count: int,
                      seed: Optional[int] = None) -> AggregatedResults:
    """
    Reduce per-path results to summary statistics.

    Guardrail statistics come only from the first ``sample_count`` paths, the
    only ones that keep year-by-year detail.
    """
    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]

    ending_balances = sorted(r.ending_balance for r in successes)
    failure_years = sorted(r.years_lasted for r in failures)
    lowest_balances = [r.lowest_balance for r in results]

    sampled = results[:sample_count]
    ceiling_triggers = 0
    floor_triggers = 0
    total_sample_years = 0
    paths_hitting_floor = 0
    for result in sampled:
        if not result.year_by_year:
            continue
        hit_floor = False
        for year_result in result.year_by_year:
            total_sample_years += 1
            if year_result.guardrail is GuardrailAction.CEILING:
                ceiling_triggers += 1
            elif year_result.guardrail is GuardrailAction.FLOOR:
                floor_triggers += 1
                hit_floor = True
        if hit_floor:
            paths_hitting_floor += 1

    return AggregatedResults(
        success_rate=len(successes) / iterations,
        iterations=iterations,
        success=SuccessStats(
            count=len(successes),
            median_ending_balance=percentile(ending_balances, 0.5),
            p10_ending_balance=percentile(ending_balances, 0.1),
            p90_ending_balance=percentile(ending_balances, 0.9),
        ),
        failure=FailureStats(
            count=len(failures),
            average_years_lasted=average(failure_years),
            median_years_lasted=percentile(failure_years, 0.5),
            worst_case=failure_years[0] if failure_years else sim_input.years,
        ),
        risk=RiskStats(
            average_lowest_balance=average(lowest_balances),
            percent_hitting_floor=paths_hitting_floor / sample_count if sample_count > 0 else 0.0,
            guardrail_trigger_stats=GuardrailTriggerStats(
                ceiling_trigger_percent=ceiling_triggers / total_sample_years if total_sample_years else 0.0,
                floor_trigger_percent=floor_triggers / total_sample_years if total_sample_years else 0.0,
            ),
        ),
        sample_paths=[r.year_by_year or [] for r in sampled],
        seed=seed,
    )


def run_monte_carlo_simulations(sim_input: SimulationInput,
                                iterations: int = 1000,
                                *,
                                seed: Optional[int] = None,
                                sample_count: int = SAMPLE_PATH_COUNT,
                                parallel: bool = False,
                                executor: str = "process",
                                max_workers: Optional[int] = None,
                                cancel_event=None,
                                deadline: Optional[float] = None,
                                debug: bool = False) -> AggregatedResults:
    """
    Run independent simulated paths and aggregate them.

    Each path draws from its own generator spawned from ``SeedSequence(seed)``,
    so a seeded run gives identical results sequentially or in parallel.

    Args:
        sim_input: Simulation inputs
        iterations: Number of paths to simulate
        seed: Run seed; fresh entropy when None (the entropy is reported back)
        sample_count: Paths that keep year-by-year detail
        parallel: Dispatch batches of paths to a worker pool
        executor: "process" or "thread" when parallel
        max_workers: Pool size, defaults to CPU count
        cancel_event: Object with ``is_set()`` (e.g. threading.Event) checked between paths
        deadline: ``time.monotonic()`` value after which the run is cancelled
        debug: Print progress diagnostics

    Returns:
        AggregatedResults
    """
    sim_input.validate()
    if isinstance(iterations, bool) or not isinstance(iterations, (int, np.integer)) or iterations <= 0:
        raise InvalidInput(f"iterations must be a positive integer, got {iterations!r}")
    if sample_count < 0:
        raise InvalidInput(f"sample_count must be non-negative, got {sample_count}")
    if parallel and executor not in ("process", "thread"):
        raise InvalidInput(f"executor must be 'process' or 'thread', got {executor!r}")
    _check_cancelled(cancel_event, deadline)

    seed_seq = np.random.SeedSequence(seed)
    child_seqs = seed_seq.spawn(iterations)
    detail_count = min(sample_count, iterations)

    if debug:
        print(f"DEBUG [run_monte_carlo_simulations]: {iterations} paths x {sim_input.years} years, "
              f"parallel={parallel}, seed={seed_seq.entropy}")
    started = time.perf_counter()

    if not parallel:
        results = []
        for index, child in enumerate(child_seqs):
            _check_cancelled(cancel_event, deadline)
            rng = np.random.default_rng(child)
            results.append(_simulate_path(sim_input, index < detail_count, rng, path_index=index))
    else:
        worker_count = _resolve_max_workers(max_workers, iterations)
        batch_size = max(1, math.ceil(iterations / (worker_count * 4)))
        ExecutorCls = ProcessPoolExecutor if executor == "process" else ThreadPoolExecutor
        results = []
        with ExecutorCls(max_workers=worker_count) as pool:
            futures = [pool.submit(_run_batch, sim_input, batch, start, detail_count)
                       for start, batch in _chunk(child_seqs, batch_size)]
            try:
                for future in futures:
                    _check_cancelled(cancel_event, deadline)
                    results.extend(future.result())
            except SimulationCancelled:
                for future in futures:
                    future.cancel()
                raise

    aggregated = aggregate_results(sim_input, results, iterations, detail_count, seed=seed_seq.entropy)

    if debug:
        print(f"DEBUG [run_monte_carlo_simulations]: success_rate={aggregated.success_rate:.3f} "
              f"in {time.perf_counter() - started:.2f}s")
    return aggregated


class MonteCarloSimulator:
    """Monte Carlo retirement simulation bound to one input and engine configuration"""

    def __init__(self, sim_input: SimulationInput, config: Optional[EngineConfig] = None):
        self.sim_input = sim_input
        self.config = config if config is not None else EngineConfig()
        self._validate_params()

    def _validate_params(self):
        """Validate inputs up front so bad parameters fail before any run"""
        self.sim_input.validate()

    def run_simulation(self, iterations: Optional[int] = None, cancel_event=None,
                       deadline: Optional[float] = None) -> AggregatedResults:
        """Run Monte Carlo simulation using the configured defaults"""
        return run_monte_carlo_simulations(
            self.sim_input,
            iterations if iterations is not None else self.config.iterations,
            seed=self.config.random_seed,
            sample_count=self.config.sample_count,
            parallel=self.config.parallel,
            executor=self.config.executor,
            max_workers=self.config.max_workers,
            cancel_event=cancel_event,
            deadline=deadline,
            debug=self.config.debug,
        )

    def run_path(self, include_year_by_year: bool = True, rng=None) -> SimulationResult:
        """Simulate a single path"""
        if rng is None:
            rng = np.random.default_rng(self.config.random_seed)
        return _simulate_path(self.sim_input, include_year_by_year, rng)
