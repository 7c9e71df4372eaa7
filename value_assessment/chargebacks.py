"""Chargeback savings model and the explanatory dispute waterfall.

The headline savings figure depends only on attempted GMV, the fraud
chargeback rate and the vendor's chargeback reduction. The dispute waterfall
is a separate, descriptive view and never feeds back into the headline.
"""

from __future__ import annotations

from typing import Literal, TypedDict

from value_assessment.models import ChargebackInput, VendorKPIs

ChargebackCategory = Literal["fraud", "service"]


class ChargebackSavings(TypedDict):
    total_gmv_attempts: float
    fraud_chargeback_rate: float
    chargeback_reduction_rate: float
    chargeback_aov: float
    current_chargebacks: float
    future_chargebacks: float
    savings: float
    current_chargeback_count: float | None
    future_chargeback_count: float | None


class DisputeWaterfall(TypedDict):
    category: ChargebackCategory
    chargeback_rate: float
    chargeback_aov: float
    gross_chargebacks: float
    gross_chargeback_count: float | None
    dispute_rate: float
    disputed: float
    win_rate: float
    won: float
    net_chargebacks: float


def _count(amount: float, aov: float) -> float | None:
    if aov <= 0:
        return None
    return amount / aov


def compute_chargeback_savings(
    total_gmv_attempts: float,
    chargebacks: ChargebackInput,
    vendor: VendorKPIs,
) -> ChargebackSavings:
    """Compute current and with-vendor fraud chargebacks over total attempted GMV."""
    fraud_rate = chargebacks.fraud_chargeback_rate_percent / 100.0
    reduction_rate = vendor.chargeback_reduction_percent / 100.0

    current = total_gmv_attempts * fraud_rate
    future = current * (1.0 - reduction_rate)

    return {
        "total_gmv_attempts": total_gmv_attempts,
        "fraud_chargeback_rate": fraud_rate,
        "chargeback_reduction_rate": reduction_rate,
        "chargeback_aov": chargebacks.fraud_chargeback_aov,
        "current_chargebacks": current,
        "future_chargebacks": future,
        "savings": current - future,
        "current_chargeback_count": _count(current, chargebacks.fraud_chargeback_aov),
        "future_chargeback_count": _count(future, chargebacks.fraud_chargeback_aov),
    }


def _waterfall(
    category: ChargebackCategory,
    total_gmv_attempts: float,
    rate_percent: float,
    aov: float,
    dispute_rate_percent: float,
    win_rate_percent: float,
) -> DisputeWaterfall:
    chargeback_rate = rate_percent / 100.0
    dispute_rate = dispute_rate_percent / 100.0
    win_rate = win_rate_percent / 100.0

    gross = total_gmv_attempts * chargeback_rate
    disputed = gross * dispute_rate
    won = disputed * win_rate

    return {
        "category": category,
        "chargeback_rate": chargeback_rate,
        "chargeback_aov": aov,
        "gross_chargebacks": gross,
        "gross_chargeback_count": _count(gross, aov),
        "dispute_rate": dispute_rate,
        "disputed": disputed,
        "win_rate": win_rate,
        "won": won,
        "net_chargebacks": gross - won,
    }


def compute_dispute_waterfalls(
    total_gmv_attempts: float,
    chargebacks: ChargebackInput,
    vendor: VendorKPIs,
) -> dict[ChargebackCategory, DisputeWaterfall]:
    """Gross -> disputed -> won -> net chargebacks for fraud and service categories."""
    return {
        "fraud": _waterfall(
            "fraud",
            total_gmv_attempts,
            chargebacks.fraud_chargeback_rate_percent,
            chargebacks.fraud_chargeback_aov,
            vendor.dispute_rate_percent,
            vendor.fraud_dispute_win_rate_percent,
        ),
        "service": _waterfall(
            "service",
            total_gmv_attempts,
            chargebacks.service_chargeback_rate_percent,
            chargebacks.service_chargeback_aov,
            vendor.service_dispute_rate_percent,
            vendor.service_dispute_win_rate_percent,
        ),
    }
