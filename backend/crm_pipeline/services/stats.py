"""Pipeline headline numbers and INR formatting."""

from typing import Iterable

from crm_pipeline.schemas.crm import Lead
from crm_pipeline.schemas.pipeline import FormattedStats, PipelineStats

CLOSING_STAGES = {"negotiation", "token"}

CRORE = 10_000_000
LAKH = 100_000


def lead_value(lead: Lead) -> float:
    """Most recent deal value, else the top of the budget range, else its floor."""
    deal_value = lead.deals[0].deal_value if lead.deals else None
    return float(deal_value or lead.budget_max or lead.budget_min or 0)


def calculate_pipeline_stats(leads: Iterable[Lead]) -> PipelineStats:
    leads = list(leads)
    total_deals = len(leads)
    if not total_deals:
        return PipelineStats()

    total_value = sum(lead_value(l) for l in leads if l.stage != "lost")
    closing_this_month = sum(lead_value(l) for l in leads if l.stage in CLOSING_STAGES)
    closed = sum(1 for l in leads if l.stage == "closed")

    return PipelineStats(
        total_value=total_value,
        total_deals=total_deals,
        avg_deal_size=total_value / total_deals,
        closing_this_month=closing_this_month,
        conversion_rate=closed / total_deals * 100,
    )


def format_currency(amount: float) -> str:
    """Short INR form: 2.50Cr, 12.00L, or the plain grouped amount."""
    if amount >= CRORE:
        return f"₹{amount / CRORE:.2f}Cr"
    if amount >= LAKH:
        return f"₹{amount / LAKH:.2f}L"
    return f"₹{amount:,.0f}"


def format_stats(stats: PipelineStats) -> FormattedStats:
    return FormattedStats(
        total_value=format_currency(stats.total_value),
        avg_deal_size=format_currency(stats.avg_deal_size),
        closing_this_month=format_currency(stats.closing_this_month),
        conversion_rate=f"{stats.conversion_rate:.1f}%",
    )
