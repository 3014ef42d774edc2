"""
IO utilities for simulation inputs and results.
Handles JSON serialization of inputs, required-input checks from host data,
input hashing with a TTL result cache, and CSV/JSON exports of results.
"""
import hashlib
import json
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from config_utils import MonteCarloAssumptions, default_assumptions
from deterministic import convert_to_nominal
from guardrails import GuardrailsConfig, SpendingGoal
from sensitivity import SensitivityReport
from simulation import (
    AggregatedResults,
    InvalidInput,
    PartTimeWork,
    SimulationInput,
    SocialSecurity,
    YearResult,
)

DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60

CURRENCY_COLUMNS = ['start_balance', 'spending', 'base_spending', 'goals_spending',
                    'ss_income', 'work_income', 'end_balance']


def _safe_numeric_convert(value: Any, default: Optional[float]) -> Optional[float]:
    """Safely convert a value to a numeric type, using default if invalid"""
    try:
        return float(value) if value is not None else default
    except (ValueError, TypeError):
        return default


def input_to_dict(sim_input: SimulationInput) -> Dict[str, Any]:
    """
    Convert SimulationInput to dictionary for JSON serialization.

    Args:
        sim_input: SimulationInput object

    Returns:
        Dictionary representation
    """
    data = asdict(sim_input)
    data['goals'] = [asdict(goal) for goal in sim_input.goals]
    return data


def dict_to_input(data: Dict[str, Any]) -> SimulationInput:
    """
    Convert dictionary (as produced by input_to_dict) to SimulationInput.

    Args:
        data: Dictionary with input values

    Returns:
        SimulationInput object
    """
    data = dict(data)
    try:
        data['goals'] = tuple(SpendingGoal(**goal) for goal in data.get('goals') or ())
        if data.get('social_security') is not None:
            data['social_security'] = SocialSecurity(**data['social_security'])
        if data.get('part_time_work') is not None:
            data['part_time_work'] = PartTimeWork(**data['part_time_work'])
        if data.get('guardrails') is not None:
            data['guardrails'] = GuardrailsConfig(**data['guardrails'])
        return SimulationInput(**data)
    except TypeError as e:
        raise InvalidInput(f"Invalid simulation input fields: {e}") from e


def save_input_json(sim_input: SimulationInput, filepath: str) -> None:
    """Save simulation input to JSON file"""
    with open(filepath, 'w') as f:
        json.dump(input_to_dict(sim_input), f, indent=2)


def load_input_json(filepath: str) -> SimulationInput:
    """Load simulation input from JSON file"""
    with open(filepath, 'r') as f:
        data = json.load(f)
    return dict_to_input(data)


def check_required_inputs(raw: Dict[str, Any]) -> List[str]:
    """
    List the host inputs that are missing before a simulation can run.

    Args:
        raw: Host data with portfolio_value, retirement_age and
            base_living_expense (or annual_spending)

    Returns:
        Human-readable names of missing inputs, empty when ready
    """
    missing = []
    portfolio_value = _safe_numeric_convert(raw.get('portfolio_value'), 0.0)
    if portfolio_value <= 0:
        missing.append("portfolio value")
    if raw.get('retirement_age') is None:
        missing.append("retirement age")
    spending = raw.get('base_living_expense', raw.get('annual_spending'))
    if _safe_numeric_convert(spending, 0.0) <= 0:
        missing.append("annual spending")
    return missing


def build_simulation_input(raw: Dict[str, Any],
                           assumptions: Optional[MonteCarloAssumptions] = None) -> SimulationInput:
    """
    Resolve host data into a validated SimulationInput.

    Missing assumptions fall back to the defaults; missing required inputs are
    reported together in a single InvalidInput.

    Args:
        raw: Host data (portfolio_value, retirement_age, plan_to_age,
            base_living_expense or annual_spending, goals, social_security,
            part_time_work, essential_floor, spending_ceiling, guardrails,
            real_return, volatility)
        assumptions: Defaults for return, volatility and horizon

    Returns:
        Validated SimulationInput
    """
    missing = check_required_inputs(raw)
    if missing:
        raise InvalidInput(f"Missing required inputs: {', '.join(missing)}")

    if assumptions is None:
        assumptions = default_assumptions()

    retirement_age = int(raw['retirement_age'])
    plan_to_age = int(raw.get('plan_to_age') or assumptions.plan_to_age)

    goals = tuple(
        SpendingGoal(
            annual_amount=float(goal['annual_amount']),
            is_essential=bool(goal.get('is_essential', False)),
            start_year=goal.get('start_year'),
            end_year=goal.get('end_year'),
            name=goal.get('name', ''),
        )
        for goal in raw.get('goals') or ()
    )

    social_security = None
    if raw.get('social_security'):
        ss = raw['social_security']
        social_security = SocialSecurity(start_year=int(ss['start_year']),
                                         annual_amount=float(ss['annual_amount']))

    part_time_work = None
    work = raw.get('part_time_work')
    if work and _safe_numeric_convert(work.get('income'), 0.0) > 0:
        part_time_work = PartTimeWork(income=float(work['income']), years=int(work.get('years', 0)))

    guardrails = None
    if raw.get('guardrails'):
        guardrails = GuardrailsConfig(**raw['guardrails'])

    sim_input = SimulationInput(
        starting_portfolio=float(raw['portfolio_value']),
        base_living_expense=float(raw.get('base_living_expense', raw.get('annual_spending'))),
        years=plan_to_age - retirement_age,
        real_return=_safe_numeric_convert(raw.get('real_return'), assumptions.real_return),
        volatility=_safe_numeric_convert(raw.get('volatility'), assumptions.volatility),
        goals=goals,
        social_security=social_security,
        part_time_work=part_time_work,
        essential_floor=_safe_numeric_convert(raw.get('essential_floor'), None),
        spending_ceiling=_safe_numeric_convert(raw.get('spending_ceiling'), None),
        guardrails=guardrails,
    )
    sim_input.validate()
    return sim_input


def inputs_hash(sim_input: SimulationInput) -> str:
    """Stable SHA-256 key of a resolved input, for result caching"""
    canonical = json.dumps(input_to_dict(sim_input), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class ResultCache:
    """In-memory result cache keyed by input hash with a time-to-live"""

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, tuple] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        cached_at, value = entry
        if self._clock() - cached_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: Any) -> None:
        now = self._clock()
        # Drop expired entries so keys that are never read again do not accumulate
        expired = [k for k, (cached_at, _) in self._entries.items()
                   if now - cached_at >= self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        self._entries[key] = (now, value)

    def __len__(self) -> int:
        return len(self._entries)


def year_results_to_dataframe(path: List[YearResult]) -> pd.DataFrame:
    """One row per simulated year of a sample path"""
    rows = []
    for year_result in path:
        row = asdict(year_result)
        row['guardrail'] = year_result.guardrail.value
        rows.append(row)
    columns = ['year', 'start_balance', 'annual_return', 'spending', 'base_spending',
               'goals_spending', 'ss_income', 'work_income', 'end_balance',
               'guardrail', 'spending_multiplier']
    return pd.DataFrame(rows, columns=columns)


def export_year_by_year_csv(path: List[YearResult],
                            currency_format: str = "real",
                            inflation_rate: float = 0.03) -> str:
    """
    Export one sample path's year-by-year details to CSV string.

    Args:
        path: Year results of a sample path
        currency_format: "real" or "nominal" (nominal compounds inflation from year 0)
        inflation_rate: Inflation used for nominal conversion

    Returns:
        CSV string
    """
    df = year_results_to_dataframe(path)
    if currency_format == "nominal":
        for col in CURRENCY_COLUMNS:
            df[col] = convert_to_nominal(df[col].to_numpy(), inflation_rate)
    df = df.rename(columns={col: f'{col}_{currency_format}' for col in CURRENCY_COLUMNS})
    return df.to_csv(index=False)


def export_sample_paths_csv(results: AggregatedResults) -> str:
    """Export all sample paths to one CSV string with a path column"""
    frames = []
    for index, path in enumerate(results.sample_paths):
        df = year_results_to_dataframe(path)
        df.insert(0, 'path', index)
        frames.append(df)
    if not frames:
        df = year_results_to_dataframe([])
        df.insert(0, 'path', [])
        return df.to_csv(index=False)
    return pd.concat(frames, ignore_index=True).to_csv(index=False)


def export_sensitivity_csv(report: SensitivityReport) -> str:
    """Export a sensitivity report, highest impact first"""
    df = pd.DataFrame([asdict(entry) for entry in report.sensitivity],
                      columns=['variable', 'impact', 'low_value', 'low_success_rate',
                               'high_value', 'high_success_rate', 'low_label', 'high_label'])
    return df.to_csv(index=False)


def create_summary_report(sim_input: SimulationInput,
                          results: AggregatedResults) -> Dict[str, Any]:
    """
    Create summary report of a simulation run.

    Args:
        sim_input: Simulation inputs
        results: Aggregated results

    Returns:
        Dictionary with summary information (sample paths omitted)
    """
    return {
        'simulation_info': {
            'iterations': results.iterations,
            'years': sim_input.years,
            'starting_portfolio': sim_input.starting_portfolio,
            'base_living_expense': sim_input.base_living_expense,
            'total_annual_spending': sim_input.total_annual_spending,
            'goals_count': len(sim_input.goals),
            'real_return': sim_input.real_return,
            'volatility': sim_input.volatility,
            'has_social_security': sim_input.social_security is not None,
            'has_part_time_work': sim_input.part_time_work is not None,
            'has_guardrails': sim_input.guardrails is not None and sim_input.guardrails.enabled,
            'seed': results.seed,
            'inputs_hash': inputs_hash(sim_input),
        },
        'success_rate': results.success_rate,
        'success': asdict(results.success),
        'failure': asdict(results.failure),
        'risk': asdict(results.risk),
    }


def export_summary_report_json(report: Dict[str, Any]) -> str:
    """
    Export summary report as JSON string.

    Args:
        report: Summary report dictionary

    Returns:
        JSON string
    """
    return json.dumps(report, indent=2, default=str)


def format_currency(value: float,
                    currency_format: str = "real",
                    precision: int = 0) -> str:
    """
    Format currency values for display.

    Args:
        value: Numeric value to format
        currency_format: "real" or "nominal"
        precision: Number of decimal places

    Returns:
        Formatted string
    """
    if abs(value) >= 1_000_000:
        formatted = f"${value/1_000_000:.{precision}f}M"
    elif abs(value) >= 1_000:
        formatted = f"${value/1_000:.{precision}f}K"
    else:
        formatted = f"${value:.{precision}f}"

    # Add currency format indicator
    suffix = " (real)" if currency_format == "real" else " (nominal)"
    return formatted + suffix
