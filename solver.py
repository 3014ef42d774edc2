"""
Maximum sustainable withdrawal solver.
Bisects annual spending until the Monte Carlo success rate meets a target.
"""
import math
import time
from dataclasses import dataclass, replace
from typing import Optional

from simulation import SimulationInput, SimulationCancelled, run_monte_carlo_simulations

DEFAULT_LOWER_BOUND = 20_000
UPPER_BOUND_RATE = 0.10


@dataclass
class MaxWithdrawalResult:
    """Best-effort answer; compare success_rate with target_success_rate to detect a miss"""
    max_withdrawal: float
    monthly_amount: float
    withdrawal_rate: float
    success_rate: float
    target_success_rate: float
    search_iterations: int


@dataclass
class SpendingComparison:
    current_spending: float
    max_sustainable_spending: float
    difference: float
    percent_difference: Optional[float]
    can_afford_current_spending: bool
    current_withdrawal_rate: float


def _round_half_up(value: float) -> float:
    """Whole-dollar rounding with halves going up (round() would go to even)"""
    return float(math.floor(value + 0.5))


def _with_spending(base_input: SimulationInput, annual_spending: float) -> SimulationInput:
    """Replace every spending field with a single base figure"""
    return replace(base_input, base_living_expense=annual_spending, goals=())


def find_max_withdrawal(base_input: SimulationInput,
                        target_success_rate: float,
                        iterations_per_test: int = 500,
                        precision: float = 500,
                        verification_iterations: int = 1000,
                        seed: Optional[int] = None,
                        parallel: bool = False,
                        cancel_event=None,
                        deadline: Optional[float] = None,
                        debug: bool = False) -> MaxWithdrawalResult:
    """
    Binary search for the highest annual spending meeting a target success rate.

    Success rate falls with spending only in expectation; at low iteration
    counts sampling noise can mislead a step, so keep ``iterations_per_test``
    at 500 or more. With a seed every bisection step reuses the same random streams,
    which removes that noise between steps.

    Args:
        base_input: Inputs whose spending fields are replaced on every step
        target_success_rate: Target success rate (0-1), e.g. 0.90
        iterations_per_test: Paths per bisection step
        precision: Stop once the bracket is narrower than this many dollars
        verification_iterations: Paths for the final re-run of the answer
        seed: Seed shared by all steps and the verification run
        parallel: Run each step's paths on a worker pool
        cancel_event: Object with ``is_set()`` checked between steps
        deadline: ``time.monotonic()`` value after which the search is cancelled
        debug: Print each bisection step

    Returns:
        MaxWithdrawalResult
    """
    # Fail fast on malformed input before the first step
    base_input.validate()

    low = float(base_input.essential_floor or DEFAULT_LOWER_BOUND)
    high = base_input.starting_portfolio * UPPER_BOUND_RATE
    search_iterations = 0
    best_withdrawal = low

    while high - low > precision:
        if cancel_event is not None and cancel_event.is_set():
            raise SimulationCancelled("max withdrawal search cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise SimulationCancelled("max withdrawal search deadline exceeded")

        search_iterations += 1
        mid = _round_half_up((low + high) / 2)

        result = run_monte_carlo_simulations(
            _with_spending(base_input, mid),
            iterations_per_test,
            seed=seed,
            sample_count=0,
            parallel=parallel,
            cancel_event=cancel_event,
            deadline=deadline,
        )

        if debug:
            print(f"DEBUG [find_max_withdrawal]: step {search_iterations}: "
                  f"mid={mid:,.0f} success_rate={result.success_rate:.3f} "
                  f"bracket=[{low:,.0f}, {high:,.0f}]")

        if result.success_rate >= target_success_rate:
            best_withdrawal = mid
            low = mid
        else:
            high = mid

    # Re-run the answer with more paths for a stable success rate
    final_result = run_monte_carlo_simulations(
        _with_spending(base_input, best_withdrawal),
        verification_iterations,
        seed=seed,
        sample_count=0,
        parallel=parallel,
        cancel_event=cancel_event,
        deadline=deadline,
    )

    if debug:
        print(f"DEBUG [find_max_withdrawal]: converged on {best_withdrawal:,.0f} after "
              f"{search_iterations} steps, verified success_rate={final_result.success_rate:.3f}")

    return MaxWithdrawalResult(
        max_withdrawal=best_withdrawal,
        monthly_amount=_round_half_up(best_withdrawal / 12),
        withdrawal_rate=best_withdrawal / base_input.starting_portfolio,
        success_rate=final_result.success_rate,
        target_success_rate=target_success_rate,
        search_iterations=search_iterations,
    )


def compare_to_current_spending(result: MaxWithdrawalResult,
                                current_spending: float,
                                starting_portfolio: float) -> SpendingComparison:
    """
    Compare the sustainable withdrawal with what is spent today.

    Returns:
        SpendingComparison; percent_difference is None when current spending is zero
    """
    difference = result.max_withdrawal - current_spending
    percent_difference = None
    if current_spending > 0:
        percent_difference = round(difference / current_spending * 100, 1)
    return SpendingComparison(
        current_spending=current_spending,
        max_sustainable_spending=result.max_withdrawal,
        difference=difference,
        percent_difference=percent_difference,
        can_afford_current_spending=result.max_withdrawal >= current_spending,
        current_withdrawal_rate=current_spending / starting_portfolio if starting_portfolio > 0 else 0.0,
    )
