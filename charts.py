"""
Plotly chart builders for retirement simulation visualizations.
Creates interactive charts for sample paths, guardrail spending, return
distributions, sensitivity rankings and fixed-return projections.
"""
import plotly.graph_objects as go
import numpy as np
from scipy import stats
from typing import Dict, List

from deterministic import DeterministicResults
from guardrails import GuardrailAction
from sensitivity import SensitivityReport
from simulation import AggregatedResults, YearResult


def create_sample_paths_chart(results: AggregatedResults,
                              title: str = "Monte Carlo Path Samples") -> go.Figure:
    """
    Create chart of the detailed sample paths kept by a Monte Carlo run.

    Args:
        results: Aggregated results with sample_paths
        title: Chart title

    Returns:
        Plotly figure
    """
    fig = go.Figure()

    for idx, path in enumerate(results.sample_paths):
        if not path:
            continue
        years = [0] + [yr.year + 1 for yr in path]
        balances = np.array([path[0].start_balance] + [yr.end_balance for yr in path]) / 1_000_000

        # Color paths by outcome (red for depletion, blue for success)
        color = 'red' if balances[-1] <= 0 else 'blue'

        fig.add_trace(go.Scatter(
            x=years,
            y=balances,
            mode='lines',
            line=dict(color=color, width=1),
            opacity=0.5,
            showlegend=False,
            hovertemplate=f"<b>Path {idx}</b><br>" +
                         "<b>Year:</b> %{x}<br>" +
                         "<b>Balance:</b> $%{y:.2f}M<br>" +
                         "<extra></extra>"
        ))

    fig.update_layout(
        title=f"{title} (Success Rate {results.success_rate:.1%})",
        xaxis_title="Year",
        yaxis_title="Portfolio Value ($ Millions)",
        template="plotly_white",
        hovermode="closest"
    )

    return fig


def create_guardrail_spending_chart(path: List[YearResult],
                                    title: str = "Spending With Guardrails") -> go.Figure:
    """
    Create chart of target versus actual spending along one sample path,
    marking the years a guardrail fired.

    Args:
        path: Year results of one sample path
        title: Chart title

    Returns:
        Plotly figure
    """
    years = np.array([yr.year for yr in path])
    target = np.array([yr.base_spending + yr.goals_spending for yr in path]) / 1000
    actual = np.array([yr.spending for yr in path]) / 1000

    fig = go.Figure()

    fig.add_trace(go.Scatter(
        x=years,
        y=target,
        mode='lines',
        name='Target Spending',
        line=dict(color='gray', width=2, dash='dash'),
        hovertemplate="<b>Year:</b> %{x}<br>" +
                     "<b>Target:</b> $%{y:.1f}K<br>" +
                     "<extra></extra>"
    ))

    fig.add_trace(go.Scatter(
        x=years,
        y=actual,
        mode='lines+markers',
        name='Actual Spending',
        line=dict(color='darkblue', width=2),
        marker=dict(size=4),
        hovertemplate="<b>Year:</b> %{x}<br>" +
                     "<b>Spending:</b> $%{y:.1f}K<br>" +
                     "<extra></extra>"
    ))

    markers = {
        GuardrailAction.CEILING: ('Ceiling Triggered', 'green', 'triangle-up'),
        GuardrailAction.FLOOR: ('Floor Triggered', 'red', 'triangle-down'),
    }
    for action, (name, color, symbol) in markers.items():
        hits = [i for i, yr in enumerate(path) if yr.guardrail is action]
        if not hits:
            continue
        fig.add_trace(go.Scatter(
            x=years[hits],
            y=actual[hits],
            mode='markers',
            name=name,
            marker=dict(color=color, size=10, symbol=symbol),
            hovertemplate=f"<b>{name}</b><br>" +
                         "<b>Year:</b> %{x}<br>" +
                         "<b>Spending:</b> $%{y:.1f}K<br>" +
                         "<extra></extra>"
        ))

    fig.update_layout(
        title=title,
        xaxis_title="Year",
        yaxis_title="Annual Spending ($000s)",
        template="plotly_white",
        hovermode="x unified"
    )

    return fig


def create_return_distribution_chart(results: AggregatedResults,
                                     mean: float,
                                     std_dev: float,
                                     title: str = "Sampled Annual Returns") -> go.Figure:
    """
    Create histogram of the returns drawn along the sample paths, overlaid
    with the configured normal distribution and a normal fit of the samples.

    Args:
        results: Aggregated results with sample_paths
        mean: Configured expected real return
        std_dev: Configured volatility
        title: Chart title

    Returns:
        Plotly figure
    """
    returns = np.array([yr.annual_return for path in results.sample_paths for yr in path]) * 100

    fig = go.Figure()

    fig.add_trace(go.Histogram(
        x=returns,
        histnorm='probability density',
        name='Sampled Returns',
        marker=dict(color='lightblue', line=dict(color='darkblue', width=0.5)),
        hovertemplate="<b>Return:</b> %{x:.1f}%<br>" +
                     "<b>Density:</b> %{y:.3f}<br>" +
                     "<extra></extra>"
    ))

    low = min(mean - 4 * std_dev, returns.min() / 100) if len(returns) else mean - 4 * std_dev
    high = max(mean + 4 * std_dev, returns.max() / 100) if len(returns) else mean + 4 * std_dev
    x_range = np.linspace(low, high, 300) * 100

    if std_dev > 0:
        fig.add_trace(go.Scatter(
            x=x_range,
            y=stats.norm.pdf(x_range, mean * 100, std_dev * 100),
            mode='lines',
            name='Assumed Normal',
            line=dict(color='darkred', width=2),
            hovertemplate="<b>Return:</b> %{x:.1f}%<br>" +
                         "<b>Density:</b> %{y:.3f}<br>" +
                         "<extra></extra>"
        ))

    # Fit needs spread in the samples
    if len(returns) > 1 and np.std(returns) > 0:
        fit_mean, fit_std = stats.norm.fit(returns)
        fig.add_trace(go.Scatter(
            x=x_range,
            y=stats.norm.pdf(x_range, fit_mean, fit_std),
            mode='lines',
            name=f'Fitted Normal (μ={fit_mean:.1f}%, σ={fit_std:.1f}%)',
            line=dict(color='green', width=2, dash='dash'),
            hoverinfo='skip'
        ))

    fig.update_layout(
        title=title,
        xaxis_title="Annual Real Return (%)",
        yaxis_title="Density",
        template="plotly_white",
        bargap=0.05
    )

    return fig


def create_sensitivity_tornado(report: SensitivityReport,
                               title: str = "Success Rate Sensitivity") -> go.Figure:
    """
    Create tornado chart of success rate swings around the baseline.

    Args:
        report: Sensitivity report, highest impact first
        title: Chart title

    Returns:
        Plotly figure
    """
    baseline = report.baseline_success_rate * 100
    # Plotly draws the first category at the bottom
    entries = list(reversed(report.sensitivity))
    names = [e.variable for e in entries]

    fig = go.Figure()

    fig.add_trace(go.Bar(
        y=names,
        x=[e.low_success_rate * 100 - baseline for e in entries],
        base=baseline,
        orientation='h',
        name='Low',
        marker_color='lightcoral',
        customdata=[[e.low_label, e.low_success_rate * 100] for e in entries],
        hovertemplate="<b>%{y}</b> at %{customdata[0]}<br>" +
                     "<b>Success Rate:</b> %{customdata[1]:.1f}%<br>" +
                     "<extra></extra>"
    ))

    fig.add_trace(go.Bar(
        y=names,
        x=[e.high_success_rate * 100 - baseline for e in entries],
        base=baseline,
        orientation='h',
        name='High',
        marker_color='lightgreen',
        customdata=[[e.high_label, e.high_success_rate * 100] for e in entries],
        hovertemplate="<b>%{y}</b> at %{customdata[0]}<br>" +
                     "<b>Success Rate:</b> %{customdata[1]:.1f}%<br>" +
                     "<extra></extra>"
    ))

    fig.add_vline(x=baseline, line_dash="dash", line_color="black",
                  annotation=dict(text=f"Baseline {baseline:.1f}%"))

    fig.update_layout(
        title=title,
        xaxis_title="Success Rate (%)",
        template="plotly_white",
        barmode='overlay'
    )

    return fig


def create_projection_comparison_chart(scenarios: Dict[str, DeterministicResults],
                                       title: str = "Fixed-Return Projections") -> go.Figure:
    """
    Create line chart comparing deterministic balance paths.

    Args:
        scenarios: Mapping of scenario name to DeterministicResults
        title: Chart title

    Returns:
        Plotly figure
    """
    colors = {'optimistic': 'green', 'expected': 'blue', 'pessimistic': 'red'}

    fig = go.Figure()

    for name, projection in scenarios.items():
        # Paths stop at depletion; the remaining years stay at zero
        balances = projection.balance_path / 1_000_000
        label = name.title()
        if projection.depleted_year is not None:
            label += f" (depleted year {projection.depleted_year})"
        fig.add_trace(go.Scatter(
            x=np.arange(len(balances)),
            y=balances,
            mode='lines',
            name=label,
            line=dict(color=colors.get(name, 'gray'), width=2),
            hovertemplate=f"<b>{name.title()}</b><br>" +
                         "<b>Year:</b> %{x}<br>" +
                         "<b>Balance:</b> $%{y:.2f}M<br>" +
                         "<extra></extra>"
        ))

    fig.update_layout(
        title=title,
        xaxis_title="Year",
        yaxis_title="Portfolio Value ($ Millions)",
        template="plotly_white",
        hovermode="x unified"
    )

    return fig
