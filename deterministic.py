"""
Deterministic retirement projection using fixed returns (no randomness).
Provides baseline scenarios for comparison with Monte Carlo results.
"""
import numpy as np
from typing import Dict, List, Optional
from dataclasses import dataclass

from guardrails import GuardrailAction
from simulation import PathState, SimulationInput, YearResult, simulate_year

# Fixed real returns for the three comparison scenarios
EXPECTED_RETURN = 0.05
OPTIMISTIC_RETURN = 0.07
PESSIMISTIC_RETURN = 0.03


@dataclass
class DeterministicResults:
    """Results from deterministic projection"""
    balance_path: np.ndarray
    spending_path: np.ndarray
    guardrail_hits: int
    year_by_year: List[YearResult]
    depleted_year: Optional[int] = None


class DeterministicProjector:
    """Deterministic retirement projection with a constant annual return"""

    def __init__(self, sim_input: SimulationInput):
        sim_input.validate()
        self.sim_input = sim_input

    def run_projection(self, annual_return: Optional[float] = None) -> DeterministicResults:
        """
        Run the same year-by-year policy as the Monte Carlo engine with a fixed return.

        Args:
            annual_return: Constant real return; defaults to the input's expected return

        Returns:
            DeterministicResults; paths stop at the year the balance is exhausted
        """
        if annual_return is None:
            annual_return = self.sim_input.real_return

        years = self.sim_input.years
        balance_path = np.zeros(years + 1)
        spending_path = np.zeros(years)
        balance_path[0] = self.sim_input.starting_portfolio

        state = PathState.start(self.sim_input.starting_portfolio)
        details = []
        guardrail_hits = 0
        depleted_year = None

        for year in range(years):
            year_result, failed = simulate_year(self.sim_input, state, year, annual_return)
            details.append(year_result)
            spending_path[year] = year_result.spending
            balance_path[year + 1] = year_result.end_balance
            if year_result.guardrail is not GuardrailAction.NONE:
                guardrail_hits += 1
            if failed:
                depleted_year = year
                break

        return DeterministicResults(
            balance_path=balance_path,
            spending_path=spending_path,
            guardrail_hits=guardrail_hits,
            year_by_year=details,
            depleted_year=depleted_year,
        )


def project_return_scenarios(sim_input: SimulationInput,
                             expected: float = EXPECTED_RETURN,
                             optimistic: float = OPTIMISTIC_RETURN,
                             pessimistic: float = PESSIMISTIC_RETURN) -> Dict[str, DeterministicResults]:
    """
    Project expected, optimistic and pessimistic fixed-return scenarios.

    Returns:
        Mapping of scenario name to DeterministicResults
    """
    projector = DeterministicProjector(sim_input)
    return {
        'expected': projector.run_projection(expected),
        'optimistic': projector.run_projection(optimistic),
        'pessimistic': projector.run_projection(pessimistic),
    }


def convert_to_nominal(real_values: np.ndarray,
                       inflation_rate: float = 0.03) -> np.ndarray:
    """
    Convert real values to nominal using compound inflation.

    Args:
        real_values: Array of real dollar values, one per year starting today
        inflation_rate: Annual inflation rate

    Returns:
        Array of nominal dollar values
    """
    real_values = np.asarray(real_values, dtype=float)
    inflation_factors = (1 + inflation_rate) ** np.arange(len(real_values))
    return real_values * inflation_factors
