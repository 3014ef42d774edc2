"""
Dynamic spending policy (guardrails) for retirement withdrawals.
Pure functions: given this year's balance and spending targets, decide what is actually spent.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, NamedTuple, Optional, Tuple


class GuardrailAction(str, Enum):
    """Which guardrail (if any) fired in a simulated year"""
    CEILING = "ceiling"
    FLOOR = "floor"
    NONE = "none"


@dataclass(frozen=True)
class GuardrailsConfig:
    """
    Spending adjustment rules keyed to the ratio of current to starting balance.

    A ratio at or above ``upper_threshold`` raises spending by ``increase_percent``;
    a ratio at or below ``lower_threshold`` cuts it by ``decrease_percent``.
    """
    enabled: bool = True
    upper_threshold: float = 1.2
    lower_threshold: float = 0.8
    increase_percent: float = 0.1
    decrease_percent: float = 0.1


@dataclass(frozen=True)
class SpendingGoal:
    """Additional annual spending stream on top of base living expenses"""
    annual_amount: float
    is_essential: bool = False
    start_year: Optional[int] = None  # inclusive, None = from year 0
    end_year: Optional[int] = None    # inclusive, None = forever
    name: str = ""

    def is_active(self, year: int) -> bool:
        return ((self.start_year is None or self.start_year <= year) and
                (self.end_year is None or self.end_year >= year))


class GuardrailDecision(NamedTuple):
    spending: float
    multiplier: float
    action: GuardrailAction


def active_goals_total(goals: Iterable[SpendingGoal], year: int,
                       essential_only: bool = False) -> float:
    """Sum of annual amounts for goals active in the given simulated year"""
    total = 0.0
    for goal in goals:
        if essential_only and not goal.is_essential:
            continue
        if goal.is_active(year):
            total += goal.annual_amount
    return total


def target_spending_for_year(base_living_expense: float,
                             goals: Iterable[SpendingGoal],
                             year: int) -> Tuple[float, float]:
    """
    Pre-guardrails spending target for a year.

    Returns:
        (base_spending, goals_spending)
    """
    return base_living_expense, active_goals_total(goals, year)


def essential_floor_for_year(base_living_expense: float,
                             goals: Iterable[SpendingGoal],
                             year: int,
                             essential_floor: Optional[float] = None) -> float:
    """
    Minimum spending guardrails may never cut below.

    An explicit floor wins; otherwise the floor is base living expense plus the
    essential goals active this year.
    """
    if essential_floor is not None:
        return essential_floor
    return base_living_expense + active_goals_total(goals, year, essential_only=True)


def validate_guardrails(guardrails: GuardrailsConfig) -> None:
    """Raise ValueError if thresholds do not satisfy 0 < lower < 1 < upper"""
    if not (0 < guardrails.lower_threshold < 1 < guardrails.upper_threshold):
        raise ValueError(
            "Guardrail thresholds must satisfy 0 < lower_threshold < 1 < upper_threshold, "
            f"got lower={guardrails.lower_threshold}, upper={guardrails.upper_threshold}")
    if guardrails.increase_percent < 0:
        raise ValueError(f"increase_percent must be non-negative, got {guardrails.increase_percent}")
    if not (0 <= guardrails.decrease_percent < 1):
        raise ValueError(f"decrease_percent must be in [0, 1), got {guardrails.decrease_percent}")


def apply_guardrails(balance: float,
                     initial_balance: float,
                     target_spending: float,
                     essential_floor: float,
                     guardrails: Optional[GuardrailsConfig],
                     multiplier: float,
                     spending_ceiling: Optional[float] = None) -> GuardrailDecision:
    """
    Decide actual spending for one year.

    ``balance`` must be the post-return, post-income, pre-withdrawal balance.
    ``initial_balance`` is assumed positive (validated upstream).

    Args:
        balance: Portfolio value this year before withdrawal
        initial_balance: Starting portfolio value of the path
        target_spending: Base plus active goals for the year
        essential_floor: Minimum spending for the year
        guardrails: Guardrails configuration, or None when not configured
        multiplier: Running spending multiplier carried by the path
        spending_ceiling: Optional maximum spending

    Returns:
        GuardrailDecision(spending, multiplier, action)
    """
    if guardrails is None or not guardrails.enabled:
        return GuardrailDecision(target_spending * multiplier, multiplier, GuardrailAction.NONE)

    ratio = balance / initial_balance

    if ratio >= guardrails.upper_threshold:
        multiplier *= 1 + guardrails.increase_percent
        spending = target_spending * multiplier
        if spending_ceiling is not None and spending > spending_ceiling:
            spending = spending_ceiling
            if target_spending > 0:
                multiplier = spending / target_spending
        return GuardrailDecision(spending, multiplier, GuardrailAction.CEILING)

    if ratio <= guardrails.lower_threshold:
        multiplier *= 1 - guardrails.decrease_percent
        spending = target_spending * multiplier
        # Never cut into essentials
        if spending < essential_floor:
            spending = essential_floor
            if target_spending > 0:
                multiplier = spending / target_spending
        return GuardrailDecision(spending, multiplier, GuardrailAction.FLOOR)

    return GuardrailDecision(target_spending * multiplier, multiplier, GuardrailAction.NONE)
