#!/usr/bin/env python3
"""
Demo script showing how to use the retirement withdrawal engine programmatically.
Runs a Monte Carlo simulation with guardrails, solves for the maximum sustainable
withdrawal, ranks sensitivities and compares fixed-return projections.
"""

from simulation import MonteCarloSimulator, SimulationInput, SocialSecurity
from config_utils import EngineConfig, default_assumptions, default_guardrails
from deterministic import project_return_scenarios
from guardrails import SpendingGoal
from sensitivity import run_sensitivity_analysis, run_what_if
from solver import compare_to_current_spending, find_max_withdrawal
from io_utils import create_summary_report, export_summary_report_json, format_currency


def build_demo_input() -> SimulationInput:
    """A 65-year-old retiree with $1.2M, travel goals and Social Security at 70"""
    assumptions = default_assumptions()
    return SimulationInput(
        starting_portfolio=1_200_000,
        base_living_expense=45_000,
        years=assumptions.years_in_retirement,
        real_return=assumptions.real_return,
        volatility=assumptions.volatility,
        goals=(
            SpendingGoal(annual_amount=8_000, start_year=0, end_year=9, name="Travel"),
            SpendingGoal(annual_amount=5_000, is_essential=True, name="Healthcare"),
        ),
        social_security=SocialSecurity(start_year=5, annual_amount=28_000),
        guardrails=default_guardrails(),
    )


def main(iterations: int = 1000, seed: int = 42):
    print("🚀 Retirement Withdrawal Engine Demo")
    print("=" * 50)

    # 1. Inputs
    print("\n📊 Setting up simulation inputs...")
    sim_input = build_demo_input()
    print(f"   Starting portfolio: {format_currency(sim_input.starting_portfolio)}")
    print(f"   Annual spending: {format_currency(sim_input.total_annual_spending, precision=1)} "
          f"({len(sim_input.goals)} goals)")
    print(f"   Horizon: {sim_input.years} years, {iterations:,} simulations")

    # 2. Monte Carlo
    print("\n🎲 Running Monte Carlo simulation...")
    simulator = MonteCarloSimulator(sim_input, EngineConfig(iterations=iterations, random_seed=seed))
    results = simulator.run_simulation()

    print(f"\n📈 Results Summary:")
    print(f"   Success Rate: {results.success_rate:.1%}")
    print(f"   Ending balance (P10/P50/P90): {format_currency(results.success.p10_ending_balance)} / "
          f"{format_currency(results.success.median_ending_balance)} / "
          f"{format_currency(results.success.p90_ending_balance)}")
    if results.failure.count:
        print(f"   Failed paths lasted {results.failure.average_years_lasted:.1f} years on average "
              f"(worst case {results.failure.worst_case})")
    triggers = results.risk.guardrail_trigger_stats
    print(f"   Guardrail triggers: ceiling {triggers.ceiling_trigger_percent:.1%}, "
          f"floor {triggers.floor_trigger_percent:.1%} of sampled years")

    # 3. Max sustainable withdrawal
    print(f"\n💰 Maximum Sustainable Withdrawal:")
    target = default_assumptions().target_success_rate
    max_result = find_max_withdrawal(sim_input, target, iterations_per_test=500, seed=seed)
    comparison = compare_to_current_spending(max_result, sim_input.total_annual_spending,
                                             sim_input.starting_portfolio)
    print(f"   At {target:.0%} confidence: {format_currency(max_result.max_withdrawal, precision=1)}/yr "
          f"({max_result.withdrawal_rate:.2%} withdrawal rate)")
    print(f"   Verified success rate: {max_result.success_rate:.1%} "
          f"after {max_result.search_iterations} search steps")
    verdict = "affordable" if comparison.can_afford_current_spending else "above the sustainable level"
    print(f"   Current spending is {verdict}")

    # 4. Sensitivity
    print(f"\n🔍 Sensitivity Analysis:")
    report = run_sensitivity_analysis(sim_input, baseline_iterations=iterations,
                                      iterations=max(100, iterations // 2), seed=seed)
    for entry in report.sensitivity:
        print(f"   {entry.variable:<18} {entry.low_label:>12} → {entry.low_success_rate:6.1%}   "
              f"{entry.high_label:>12} → {entry.high_success_rate:6.1%}")

    # 5. What-if
    print(f"\n🔀 What-if: delay Social Security to year 7")
    what_if = run_what_if(sim_input, iterations=iterations, seed=seed, ss_start_year=7)
    for change in what_if.changes:
        print(f"   {change}")
    print(f"   Success Rate: {results.success_rate:.1%} → {what_if.results.success_rate:.1%}")

    # 6. Deterministic projections
    print(f"\n📉 Fixed-Return Projections:")
    for name, projection in project_return_scenarios(sim_input).items():
        outcome = (f"depleted in year {projection.depleted_year}" if projection.depleted_year is not None
                   else f"ends at {format_currency(projection.balance_path[-1])}")
        print(f"   {name.title():<12} {outcome}, {projection.guardrail_hits} guardrail adjustments")

    # 7. Year-by-year details of the first sample path
    if results.sample_paths:
        print(f"\n📋 Sample Path Details (First 5 Years):")
        print(f"   {'Year':<6} {'Start':<12} {'Return':<8} {'Spending':<10} {'End':<12} Guardrail")
        for yr in results.sample_paths[0][:5]:
            print(f"   {yr.year:<6} ${yr.start_balance/1000:>9,.0f}K {yr.annual_return:>7.1%} "
                  f"${yr.spending/1000:>7,.1f}K ${yr.end_balance/1000:>9,.0f}K {yr.guardrail.value}")

    # 8. Report export
    print(f"\n💾 Summary Export Demo:")
    json_report = export_summary_report_json(create_summary_report(sim_input, results))
    print(f"   Summary exported to JSON ({len(json_report)} characters)")

    print(f"\n✅ Demo completed successfully!")
    print(f"   To run tests: python3 -m pytest tests/ -v")


if __name__ == "__main__":
    main()
