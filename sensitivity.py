"""
Sensitivity analysis and what-if scenarios.
Perturbs simulation inputs and reruns the Monte Carlo engine to compare outcomes.
"""
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence

from config_utils import default_guardrails
from simulation import (
    AggregatedResults,
    InvalidInput,
    PartTimeWork,
    SimulationInput,
    run_monte_carlo_simulations,
)


@dataclass(frozen=True)
class SensitivityVariable:
    """An input field and the multipliers used to perturb it"""
    name: str
    key: str
    low_mult: float
    high_mult: float
    format: Callable[[float], str] = str


def _format_dollars(value: float) -> str:
    return f"${round(value):,}"


def _format_percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _format_years(value: float) -> str:
    return f"{round(value)} years"


DEFAULT_SENSITIVITY_VARIABLES = (
    SensitivityVariable("Base Spending", "base_living_expense", 0.8, 1.2, _format_dollars),
    SensitivityVariable("Expected Return", "real_return", 0.7, 1.3, _format_percent),
    SensitivityVariable("Volatility", "volatility", 0.7, 1.3, _format_percent),
    # Roughly five years either side of a 30-year horizon
    SensitivityVariable("Planning Horizon", "years", 0.83, 1.17, _format_years),
)


@dataclass
class SensitivityEntry:
    variable: str
    impact: float
    low_value: float
    low_success_rate: float
    high_value: float
    high_success_rate: float
    low_label: str = ""
    high_label: str = ""


@dataclass
class SensitivityReport:
    baseline_success_rate: float
    sensitivity: List[SensitivityEntry] = field(default_factory=list)


def _perturbed_value(base_input: SimulationInput, key: str, mult: float) -> float:
    value = getattr(base_input, key) * mult
    if key == "years":
        # Horizon must stay a whole number of years
        return max(1, int(round(value)))
    return value


def run_sensitivity_analysis(base_input: SimulationInput,
                             baseline_iterations: int = 1000,
                             iterations: int = 500,
                             seed: Optional[int] = None,
                             variables: Sequence[SensitivityVariable] = DEFAULT_SENSITIVITY_VARIABLES,
                             parallel: bool = False,
                             debug: bool = False) -> SensitivityReport:
    """
    Rank inputs by how much they move the success rate.

    Each variable is scaled down and up by its multipliers and the engine is
    rerun for both; impact is the absolute difference in success rate.

    Args:
        base_input: Baseline simulation inputs
        baseline_iterations: Paths for the baseline run
        iterations: Paths for each perturbed run
        seed: Shared seed, so every run sees the same random streams
        variables: Variables to perturb
        parallel: Run paths on a worker pool
        debug: Print each variable's result

    Returns:
        SensitivityReport with entries sorted by impact, highest first
    """
    base_input.validate()
    baseline = run_monte_carlo_simulations(base_input, baseline_iterations, seed=seed,
                                           sample_count=0, parallel=parallel)

    entries = []
    for variable in variables:
        low_value = _perturbed_value(base_input, variable.key, variable.low_mult)
        high_value = _perturbed_value(base_input, variable.key, variable.high_mult)

        low_result = run_monte_carlo_simulations(
            replace(base_input, **{variable.key: low_value}), iterations,
            seed=seed, sample_count=0, parallel=parallel)
        high_result = run_monte_carlo_simulations(
            replace(base_input, **{variable.key: high_value}), iterations,
            seed=seed, sample_count=0, parallel=parallel)

        entry = SensitivityEntry(
            variable=variable.name,
            impact=abs(high_result.success_rate - low_result.success_rate),
            low_value=low_value,
            low_success_rate=low_result.success_rate,
            high_value=high_value,
            high_success_rate=high_result.success_rate,
            low_label=variable.format(low_value),
            high_label=variable.format(high_value),
        )
        if debug:
            print(f"DEBUG [run_sensitivity_analysis]: {entry.variable}: "
                  f"{entry.low_label} -> {entry.low_success_rate:.1%}, "
                  f"{entry.high_label} -> {entry.high_success_rate:.1%}")
        entries.append(entry)

    entries.sort(key=lambda e: e.impact, reverse=True)
    return SensitivityReport(baseline_success_rate=baseline.success_rate, sensitivity=entries)


@dataclass
class WhatIfResult:
    results: AggregatedResults
    scenario: SimulationInput
    changes: List[str] = field(default_factory=list)


def run_what_if(base_input: SimulationInput,
                iterations: int = 1000,
                seed: Optional[int] = None,
                annual_spending: Optional[float] = None,
                years: Optional[int] = None,
                real_return: Optional[float] = None,
                volatility: Optional[float] = None,
                ss_start_year: Optional[int] = None,
                part_time_income: Optional[float] = None,
                part_time_years: Optional[int] = None,
                guardrails_enabled: Optional[bool] = None) -> WhatIfResult:
    """
    Run the engine with some inputs overridden, without touching the baseline.

    An ``annual_spending`` override replaces base spending and drops goals; the
    essential floor becomes 70% of the new figure.

    Returns:
        WhatIfResult with the results, the scenario input and a description of each change
    """
    changes = []
    overrides = {}

    if annual_spending is not None:
        if annual_spending != base_input.total_annual_spending:
            changes.append(f"Spending: ${base_input.total_annual_spending:,.0f} → ${annual_spending:,.0f}")
        overrides.update(base_living_expense=annual_spending, goals=(),
                         essential_floor=annual_spending * 0.7)

    if years is not None and years != base_input.years:
        changes.append(f"Planning horizon: {base_input.years} → {years} years")
        overrides['years'] = years

    if real_return is not None and real_return != base_input.real_return:
        changes.append(f"Real return: {base_input.real_return * 100:.1f}% → {real_return * 100:.1f}%")
        overrides['real_return'] = real_return

    if volatility is not None and volatility != base_input.volatility:
        changes.append(f"Volatility: {base_input.volatility * 100:.1f}% → {volatility * 100:.1f}%")
        overrides['volatility'] = volatility

    if ss_start_year is not None:
        if base_input.social_security is None:
            raise InvalidInput("ss_start_year override requires Social Security in the baseline")
        new_start = max(0, ss_start_year)
        if new_start != base_input.social_security.start_year:
            changes.append(f"Social Security start: year {base_input.social_security.start_year} → year {new_start}")
            overrides['social_security'] = replace(base_input.social_security, start_year=new_start)

    if part_time_income is not None or part_time_years is not None:
        current = base_input.part_time_work
        income = part_time_income if part_time_income is not None else (current.income if current else 0.0)
        work_years = part_time_years if part_time_years is not None else (current.years if current else 0)
        if income > 0 and work_years > 0:
            overrides['part_time_work'] = PartTimeWork(income=income, years=work_years)
            changes.append(f"Part-time work: ${income:,.0f}/yr for {work_years} years")
        else:
            overrides['part_time_work'] = None
            if current is not None:
                changes.append("Part-time work: removed")

    if guardrails_enabled is not None:
        has_guardrails = base_input.guardrails is not None and base_input.guardrails.enabled
        if guardrails_enabled and not has_guardrails:
            if base_input.guardrails is not None:
                overrides['guardrails'] = replace(base_input.guardrails, enabled=True)
            else:
                overrides['guardrails'] = default_guardrails()
            changes.append("Guardrails: disabled → enabled")
        elif not guardrails_enabled and has_guardrails:
            overrides['guardrails'] = None
            changes.append("Guardrails: enabled → disabled")

    scenario = replace(base_input, **overrides)
    results = run_monte_carlo_simulations(scenario, iterations, seed=seed)
    return WhatIfResult(results=results, scenario=scenario, changes=changes)
