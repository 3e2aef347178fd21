"""Opportunity ranking."""

from __future__ import annotations

from polystrat.models.opportunity import Opportunity


def rank_opportunities(opportunities: list[Opportunity]) -> list[Opportunity]:
    """기대 수익 내림차순, ROI 내림차순으로 정렬.

    Returns new list (원본 불변).
    """
    return sorted(
        opportunities,
        key=lambda o: (o.expected_profit, o.roi_pct),
        reverse=True,
    )
