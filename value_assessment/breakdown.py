"""Line-item breakdowns of an assessment for human review.

Builders here only read figures from an `AssessmentResult`; they never
re-run the funnel or chargeback math, so the breakdown always agrees with
the headline numbers.

Value formatting is driven by the label suffix:
    "($)" whole-unit currency, "(%)" percent with at most two decimals,
    "(#)" whole-unit count with thousands separators.
"""

from __future__ import annotations

from typing import Callable, TypedDict

from value_assessment.engine import AssessmentResult, DriverKey, RegionAssessment
from value_assessment.funnel import FunnelStages


class LineItem(TypedDict):
    label: str
    current: float | None
    impact: float | None
    future: float | None
    formula: str | None
    is_header: bool
    is_subheader: bool
    is_result: bool
    negative_is_good: bool


class FormattedLineItem(TypedDict):
    label: str
    current: str
    impact: str
    future: str
    formula: str | None
    is_header: bool
    is_subheader: bool
    is_result: bool
    negative_is_good: bool
    favorable: bool | None


def _header(label: str) -> LineItem:
    return _item(label, None, None, is_header=True)


def _subheader(label: str) -> LineItem:
    return _item(label, None, None, is_subheader=True)


def _item(
    label: str,
    current: float | None,
    future: float | None,
    *,
    impact: float | None = None,
    formula: str | None = None,
    is_header: bool = False,
    is_subheader: bool = False,
    is_result: bool = False,
    negative_is_good: bool = False,
) -> LineItem:
    if impact is None and current is not None and future is not None:
        impact = future - current
    return {
        "label": label,
        "current": current,
        "impact": impact,
        "future": future,
        "formula": formula,
        "is_header": is_header,
        "is_subheader": is_subheader,
        "is_result": is_result,
        "negative_is_good": negative_is_good,
    }


def _pct(rate: float) -> float:
    return rate * 100.0


def _stage_pair(
    label: str,
    current: FunnelStages,
    future: FunnelStages,
    key: str,
    *,
    percent: bool = False,
    **flags: object,
) -> LineItem:
    convert: Callable[[float], float] = _pct if percent else float
    return _item(label, convert(current[key]), convert(future[key]), **flags)  # type: ignore[literal-required, arg-type]


def _region_items(item: RegionAssessment) -> list[LineItem]:
    current = item["current"]
    future = item["future"]
    aov = item["average_order_value"]

    lines: list[LineItem] = [
        _header(f"{item['region']} Region"),
        _item("Annual GMV Attempts ($)", item["gmv_attempts"], item["gmv_attempts"]),
    ]
    if item["gross_attempts_count"]:
        lines.append(_item("Gross Sales Attempts (#)", item["gross_attempts_count"], item["gross_attempts_count"]))
    if aov:
        lines.append(_item("Average Order Value ($)", aov, aov, formula="Annual GMV Attempts / Gross Sales Attempts"))

    lines.extend(
        [
            _subheader(f"Fraud Decisioning ({item['fraud_check_timing']})"),
            _stage_pair("Fraud Approval Rate (%)", current, future, "fraud_approval_rate", percent=True),
            _stage_pair(
                "Fraud Approved GMV ($)",
                current,
                future,
                "fraud_approved",
                formula="Annual GMV Attempts x Fraud Approval Rate",
            ),
            _subheader("3DS Challenge"),
        ]
    )
    if current["alternative_payment_share"] > 0:
        lines.append(
            _stage_pair(
                "Alternative Payment Methods (%)", current, future, "alternative_payment_share", percent=True
            )
        )
    lines.extend(
        [
            _stage_pair(
                "3DS Challenge Rate (%)", current, future, "three_ds_challenge_rate", percent=True, negative_is_good=True
            ),
            _stage_pair(
                "3DS Challenged GMV ($)",
                current,
                future,
                "three_ds_challenged",
                formula="Card GMV x 3DS Challenge Rate",
                negative_is_good=True,
            ),
            _stage_pair(
                "3DS Abandonment Rate (%)",
                current,
                future,
                "three_ds_abandonment_rate",
                percent=True,
                negative_is_good=True,
            ),
            _stage_pair(
                "3DS Abandoned GMV ($)",
                current,
                future,
                "three_ds_abandoned",
                formula="3DS Challenged GMV x 3DS Abandonment Rate",
                negative_is_good=True,
            ),
            _stage_pair("3DS Exempt GMV ($)", current, future, "three_ds_exempt"),
            _stage_pair(
                "GMV to Authorization ($)",
                current,
                future,
                "to_auth",
                formula="3DS Exempt GMV + (3DS Challenged GMV - 3DS Abandoned GMV)",
            ),
            _subheader("Bank Authorization"),
            _stage_pair(
                "Issuing Bank Decline Rate (%)", current, future, "bank_decline_rate", percent=True, negative_is_good=True
            ),
            _stage_pair("Bank Approval Rate (%)", current, future, "bank_approval_rate", percent=True),
            _stage_pair(
                "Bank Approved GMV ($)",
                current,
                future,
                "bank_approved",
                formula="GMV to Authorization x Bank Approval Rate",
            ),
            _subheader("Manual Review"),
            _stage_pair(
                "Manual Review Rate (%)", current, future, "manual_review_rate", percent=True, negative_is_good=True
            ),
            _stage_pair("Manual Reviewed GMV ($)", current, future, "manual_reviewed", negative_is_good=True),
            _stage_pair(
                "Manual Review Abandonment (%)",
                current,
                future,
                "manual_review_loss_rate",
                percent=True,
                negative_is_good=True,
            ),
            _stage_pair(
                "Manual Review Lost GMV ($)",
                current,
                future,
                "manual_review_lost",
                formula="Manual Reviewed GMV x Manual Review Abandonment",
                negative_is_good=True,
            ),
            _stage_pair(
                "Completed GMV ($)",
                current,
                future,
                "completed",
                formula="Bank Approved GMV - Manual Review Lost GMV",
                is_result=True,
            ),
            _stage_pair("Complete Rate (%)", current, future, "complete_rate", percent=True, is_result=True),
        ]
    )
    if aov:
        lines.append(_item("Completed Transactions (#)", current["completed"] / aov, future["completed"] / aov))
    lines.append(
        _item(
            f"{item['region']} GMV Uplift ($)",
            None,
            None,
            impact=item["gmv_uplift"],
            formula="Completed GMV with vendor - Completed GMV today",
            is_result=True,
        )
    )
    return lines


def build_gmv_uplift_breakdown(result: AssessmentResult) -> list[LineItem]:
    """Stage-by-stage GMV uplift lines per present region, then the total.

    Returns an empty list when no region has GMV.
    """
    if not result["regions"]:
        return []

    lines: list[LineItem] = []
    for item in result["regions"].values():
        lines.extend(_region_items(item))

    aggregate = result["aggregate"]
    lines.extend(
        [
            _header("Total"),
            _item(
                "Total GMV Uplift ($)",
                None,
                None,
                impact=aggregate["total_gmv_uplift"],
                formula="Sum of regional GMV uplift",
                is_result=True,
            ),
            _item("GMV Uplift (%)", None, None, impact=aggregate["gmv_uplift_percent"]),
        ]
    )
    return lines


def build_chargeback_breakdown(result: AssessmentResult) -> list[LineItem]:
    """Headline chargeback savings lines followed by the illustrative dispute waterfall.

    The waterfall lines carry current-state figures only and do not alter the
    headline savings. Returns an empty list when no region has GMV.
    """
    if not result["regions"]:
        return []

    model = result["chargebacks"]
    future_rate = model["fraud_chargeback_rate"] * (1.0 - model["chargeback_reduction_rate"])

    lines: list[LineItem] = [
        _header("Chargeback Savings"),
        _item("Total GMV Attempts ($)", model["total_gmv_attempts"], model["total_gmv_attempts"]),
        _item(
            "Fraud Chargeback Rate (%)",
            _pct(model["fraud_chargeback_rate"]),
            _pct(future_rate),
            negative_is_good=True,
        ),
        _item("Chargeback Reduction (%)", None, _pct(model["chargeback_reduction_rate"])),
        _item(
            "Fraud Chargebacks ($)",
            model["current_chargebacks"],
            model["future_chargebacks"],
            formula="Total GMV Attempts x Fraud Chargeback Rate",
            negative_is_good=True,
        ),
    ]
    if model["current_chargeback_count"] is not None:
        lines.append(
            _item(
                "Fraud Chargebacks (#)",
                model["current_chargeback_count"],
                model["future_chargeback_count"],
                formula="Fraud Chargebacks ($) / Chargeback AOV",
                negative_is_good=True,
            )
        )
    lines.append(
        _item(
            "Chargeback Savings ($)",
            None,
            None,
            impact=model["savings"],
            formula="Current Fraud Chargebacks - Fraud Chargebacks with vendor",
            is_result=True,
        )
    )

    lines.append(_header("Dispute Waterfall (illustrative)"))
    for category, waterfall in result["dispute_waterfalls"].items():
        lines.append(_subheader(f"{category.title()} Chargebacks"))
        lines.append(_item("Gross Chargebacks ($)", waterfall["gross_chargebacks"], None, negative_is_good=True))
        if waterfall["gross_chargeback_count"] is not None:
            lines.append(
                _item("Gross Chargebacks (#)", waterfall["gross_chargeback_count"], None, negative_is_good=True)
            )
        lines.extend(
            [
                _item("Dispute Rate (%)", _pct(waterfall["dispute_rate"]), None),
                _item("Disputed Chargebacks ($)", waterfall["disputed"], None),
                _item("Dispute Win Rate (%)", _pct(waterfall["win_rate"]), None),
                _item("Won Disputes ($)", waterfall["won"], None),
                _item(
                    "Net Chargebacks ($)",
                    waterfall["net_chargebacks"],
                    None,
                    formula="Gross Chargebacks - Won Disputes",
                    negative_is_good=True,
                ),
            ]
        )
    return lines


BREAKDOWN_BUILDERS: dict[DriverKey, Callable[[AssessmentResult], list[LineItem]]] = {
    "gmv_uplift": build_gmv_uplift_breakdown,
    "chargeback_savings": build_chargeback_breakdown,
}


def build_breakdown(result: AssessmentResult, driver: str) -> list[LineItem]:
    """Build the breakdown for one value driver.

    Raises:
        KeyError: If `driver` is not a known value driver.
    """
    if driver not in BREAKDOWN_BUILDERS:
        raise KeyError(f"Unknown value driver: {driver}")
    return BREAKDOWN_BUILDERS[driver](result)  # type: ignore[index]


def format_value(label: str, value: float | None) -> str:
    """Format a number according to the unit suffix of its label."""
    if value is None:
        return ""

    if label.endswith("($)"):
        rounded = round(value)
        sign = "-" if rounded < 0 else ""
        return f"{sign}${abs(rounded):,.0f}"
    if label.endswith("(%)"):
        rounded = round(value, 2)
        if rounded == 0:
            return "0%"
        return f"{rounded:,.2f}".rstrip("0").rstrip(".") + "%"
    if label.endswith("(#)"):
        rounded = round(value)
        return f"{rounded:,.0f}" if rounded != 0 else "0"
    return f"{value:,.2f}"


def _favorable(item: LineItem) -> bool | None:
    impact = item["impact"]
    if impact is None or round(impact, 6) == 0:
        return None
    return impact < 0 if item["negative_is_good"] else impact > 0


def format_line_items(items: list[LineItem]) -> list[FormattedLineItem]:
    """Render line-item numbers as display strings and flag favorable impacts."""
    return [
        {
            "label": item["label"],
            "current": format_value(item["label"], item["current"]),
            "impact": format_value(item["label"], item["impact"]),
            "future": format_value(item["label"], item["future"]),
            "formula": item["formula"],
            "is_header": item["is_header"],
            "is_subheader": item["is_subheader"],
            "is_result": item["is_result"],
            "negative_is_good": item["negative_is_good"],
            "favorable": _favorable(item),
        }
        for item in items
    ]
