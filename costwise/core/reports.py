"""
Plain-text reports for costwise results.

Renders space cost analyses, waste analyses and batches of optimized
configurations into reports meant for terminals and logs.
"""

from typing import Iterable

from costwise.core.cost_engine import CostRecommendation, SpaceCostAnalysis
from costwise.core.optimizer import OptimizedConfiguration
from costwise.core.schemas import OptimizationType, Severity
from costwise.core.waste_detector import SpaceWasteAnalysis

RULE = "=" * 60
SUBRULE = "-" * 45
TOP_IN_REPORT = 5

DIMENSION_LABELS = {
    OptimizationType.CPU: "CPU",
    OptimizationType.MEMORY: "Memory",
    OptimizationType.REPLICAS: "Replicas",
}


def _header(title: str) -> list[str]:
    return [RULE, f"       {title}", RULE, ""]


def generate_cost_report(
    analysis: SpaceCostAnalysis,
    recommendations: Iterable[CostRecommendation] = (),
) -> str:
    """
    Render a space cost analysis.

    Args:
        analysis: Cost analysis to render.
        recommendations: Optional allocation-based recommendations.

    Returns:
        Report text.
    """
    lines = _header("Cost Analysis Report")
    lines.append(f"Space: {analysis.space_id}")
    lines.append(f"Analyzed At: {analysis.analyzed_at:%Y-%m-%d %H:%M:%S}")
    lines.append(f"Units: {analysis.unit_count}")
    lines.append(f"Total Monthly Cost: ${analysis.total_monthly_cost:.2f}")
    lines.append("")

    lines.append("Unit Costs:")
    lines.append(SUBRULE)
    for estimate in sorted(analysis.units, key=lambda u: u.monthly_cost, reverse=True):
        specs = estimate.specs
        lines.append(
            f"{estimate.unit_name:<25} {estimate.kind:<12} ${estimate.monthly_cost:>8.2f}/mo  "
            f"(cpu {specs.cpu}, mem {specs.memory}, x{specs.replicas})"
        )

    recommendations = list(recommendations)
    if recommendations:
        lines.append("")
        lines.append("Recommendations:")
        lines.append(SUBRULE)
        for rec in recommendations:
            lines.append(
                f"* {rec.unit_name}: {rec.resource} {rec.current_value} -> {rec.recommended_value} "
                f"(${rec.monthly_savings:.2f} savings, {rec.risk.value} risk)"
            )

    if analysis.errors:
        lines.append("")
        lines.append("Skipped Units:")
        lines.append(SUBRULE)
        for error in analysis.errors:
            lines.append(f"* {error.slug}: {error.message}")

    return "\n".join(lines) + "\n"


def generate_waste_report(analysis: SpaceWasteAnalysis) -> str:
    """
    Render a space waste analysis.

    Args:
        analysis: Waste analysis to render.

    Returns:
        Report text.
    """
    lines = _header("Waste Analysis Report")
    lines.append(f"Space: {analysis.space_id}")
    lines.append(f"Analyzed At: {analysis.analyzed_at:%Y-%m-%d %H:%M:%S}")
    lines.append(f"Units Analyzed: {analysis.units_analyzed}")
    lines.append(f"Units with Waste: {analysis.units_with_waste}")
    lines.append("")

    lines.append("Cost Summary:")
    lines.append(SUBRULE)
    lines.append(f"Estimated Monthly Cost: ${analysis.total_estimated_cost:.2f}")
    lines.append(f"Actual Monthly Cost:    ${analysis.total_actual_cost:.2f}")
    lines.append(
        f"Wasted Monthly Cost:    ${analysis.total_wasted_cost:.2f} ({analysis.waste_percent:.1f}%)"
    )
    lines.append("")

    lines.append("Waste by Severity:")
    lines.append(SUBRULE)
    for severity in (Severity.HIGH, Severity.MEDIUM, Severity.LOW):
        summary = analysis.by_severity.get(severity)
        if summary is None:
            continue
        lines.append(
            f"{severity.value:<6}: {summary.count:>2} units, ${summary.total_cost:.2f} wasted, "
            f"${summary.potential_savings:.2f} potential savings"
        )

    lines.append("")
    lines.append("Top Waste Opportunities:")
    lines.append(SUBRULE)
    for detection in analysis.top_units[:TOP_IN_REPORT]:
        lines.append(
            f"{detection.unit_name:<25} {detection.waste_severity.value:>8}  "
            f"${detection.wasted_monthly_cost:>6.2f} wasted  "
            f"${detection.potential_savings:>6.2f} savings  [{detection.kind}]"
        )

    lines.append("")
    lines.append("Top Recommendations:")
    lines.append(SUBRULE)
    for rec in analysis.top_recommendations[:TOP_IN_REPORT]:
        lines.append(f"* [{rec.priority.value}] {rec.action} (${rec.potential_savings:.2f} savings)")
        lines.append(f"  Risk: {rec.risk.value} - {rec.risk_description}")

    return "\n".join(lines) + "\n"


def generate_optimization_report(configurations: Iterable[OptimizedConfiguration]) -> str:
    """
    Render a batch of optimized configurations.

    Args:
        configurations: Optimization results.

    Returns:
        Report text with totals, risk distribution and top opportunities.
    """
    configurations = sorted(
        configurations,
        key=lambda c: c.estimated_savings.monthly_savings,
        reverse=True,
    )
    total_savings = sum(c.estimated_savings.monthly_savings for c in configurations)
    total_current = sum(c.estimated_savings.current_monthly_cost for c in configurations)
    savings_percent = total_savings / total_current * 100 if total_current > 0 else 0.0

    risk_counts = {level: 0 for level in Severity}
    for configuration in configurations:
        risk_counts[configuration.risk_assessment.overall_risk] += 1

    lines = _header("Optimization Report")
    lines.append(f"Units Analyzed: {len(configurations)}")
    lines.append(f"Current Monthly Cost: ${total_current:.2f}")
    lines.append(f"Potential Monthly Savings: ${total_savings:.2f} ({savings_percent:.1f}%)")
    lines.append("")

    lines.append("Risk Distribution:")
    lines.append(SUBRULE)
    lines.append(f"* LOW risk:    {risk_counts[Severity.LOW]} units")
    lines.append(f"* MEDIUM risk: {risk_counts[Severity.MEDIUM]} units")
    lines.append(f"* HIGH risk:   {risk_counts[Severity.HIGH]} units")
    lines.append("")

    lines.append("Top Optimization Opportunities:")
    lines.append(SUBRULE)
    for configuration in configurations[:TOP_IN_REPORT]:
        savings = configuration.estimated_savings
        lines.append(
            f"{configuration.original_unit.slug:<30} {configuration.risk_assessment.overall_risk.value} risk "
            f"${savings.monthly_savings:.2f}/mo savings ({savings.savings_percent:.1f}%)"
        )
        for opt in configuration.optimizations:
            lines.append(
                f"  - {DIMENSION_LABELS[opt.type]}: {opt.original_value} -> {opt.optimized_value} "
                f"({opt.reduction_percent:.1f}% reduction)"
            )
        lines.append(f"  Recommended phase: {configuration.risk_assessment.recommended_phase.value}")

    return "\n".join(lines) + "\n"
