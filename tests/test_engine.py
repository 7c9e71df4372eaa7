import json
import math

import pytest

from value_assessment.demo_data import build_demo_profiles, get_demo_profile
from value_assessment.engine import assess_region, compute_assessment
from value_assessment.funnel import LEGACY_TWO_STAGE_CONFIG
from value_assessment.models import InputProfile, apply_profile_update


def _profile(**payload) -> InputProfile:
    return InputProfile.model_validate(payload)


def _scenario_a() -> InputProfile:
    return get_demo_profile("single_region_amer")


def test_scenario_a_single_region_uplift() -> None:
    result = compute_assessment(_scenario_a())
    amer = result["regions"]["AMER"]

    assert amer["current"]["complete_rate"] == pytest.approx(0.8782913, rel=1e-6)
    assert amer["future"]["complete_rate"] > amer["current"]["complete_rate"]
    assert result["aggregate"]["total_gmv_uplift"] > 0
    assert result["aggregate"]["total_gmv_uplift"] == pytest.approx(2_974_936.9855, rel=1e-7)
    assert amer["average_order_value"] == pytest.approx(150.0)


def test_scenario_b_all_regions_zero_gmv() -> None:
    profile = _profile(
        regions={
            "AMER": {"annual_gmv_attempts": 0},
            "EMEA": {"annual_gmv_attempts": 0},
            "APAC": {"annual_gmv_attempts": 0},
        },
        margin_enabled=True,
    )
    result = compute_assessment(profile)
    aggregate = result["aggregate"]

    assert result["regions"] == {}
    assert aggregate["total_value"] == 0
    assert aggregate["gmv_uplift_percent"] == 0.0
    assert aggregate["monthly_run_rate"] == 0.0
    assert result["chargebacks"]["savings"] == 0.0


def test_scenario_c_chargeback_savings() -> None:
    profile = _profile(
        regions={"AMER": {"annual_gmv_attempts": 150_000_000}},
        chargebacks={"fraud_chargeback_rate_percent": 0.8, "fraud_chargeback_aov": 158},
        vendor={"chargeback_reduction_percent": 70},
    )
    chargebacks = compute_assessment(profile)["chargebacks"]

    assert chargebacks["current_chargebacks"] == pytest.approx(1_200_000)
    assert chargebacks["future_chargebacks"] == pytest.approx(360_000)
    assert chargebacks["savings"] == pytest.approx(840_000)
    assert chargebacks["current_chargeback_count"] == pytest.approx(1_200_000 / 158)


def test_chargebacks_use_total_gmv_across_regions() -> None:
    profile = _profile(
        regions={
            "AMER": {"annual_gmv_attempts": 100_000_000},
            "EMEA": {"annual_gmv_attempts": 50_000_000},
        }
    )
    assert compute_assessment(profile)["chargebacks"]["current_chargebacks"] == pytest.approx(1_200_000)


def test_scenario_d_disabled_gmv_driver() -> None:
    result = compute_assessment(get_demo_profile("chargebacks_only"))
    aggregate = result["aggregate"]

    assert aggregate["total_value"] == aggregate["chargeback_savings"]
    assert aggregate["total_gmv_uplift"] > 0
    assert aggregate["drivers"]["gmv_uplift"]["included"] is False
    assert aggregate["drivers"]["gmv_uplift"]["value"] == aggregate["total_gmv_uplift"]
    assert aggregate["value_distribution"]["business_growth"] == aggregate["total_gmv_uplift"]


def test_toggle_does_not_change_driver_values() -> None:
    enabled = compute_assessment(_scenario_a())["aggregate"]
    disabled_profile = apply_profile_update(_scenario_a(), {"drivers": {"chargeback_savings": False}})
    disabled = compute_assessment(disabled_profile)["aggregate"]

    assert disabled["chargeback_savings"] == enabled["chargeback_savings"]
    assert disabled["total_value"] == pytest.approx(enabled["total_value"] - enabled["chargeback_savings"])


def test_chargebacks_independent_of_funnel_rates() -> None:
    base = compute_assessment(_scenario_a())["chargebacks"]
    changed_profile = apply_profile_update(
        _scenario_a(),
        {
            "regions": {"AMER": {"three_ds_challenge_rate_percent": 60, "manual_review_rate_percent": 40}},
            "vendor": {"manual_review": {"mode": "absolute", "value": 0}},
        },
    )
    changed = compute_assessment(changed_profile)["chargebacks"]

    assert changed["current_chargebacks"] == base["current_chargebacks"]
    assert changed["future_chargebacks"] == base["future_chargebacks"]


def test_zero_gmv_region_is_excluded() -> None:
    with_empty = _profile(
        regions={"AMER": {"annual_gmv_attempts": 75_000_000}, "EMEA": {"annual_gmv_attempts": 0, "gross_margin_percent": 90}},
        margin_enabled=True,
    )
    alone = _profile(regions={"AMER": {"annual_gmv_attempts": 75_000_000}}, margin_enabled=True)

    first = compute_assessment(with_empty)
    second = compute_assessment(alone)

    assert list(first["regions"]) == ["AMER"]
    assert first["aggregate"] == second["aggregate"]
    with pytest.raises(KeyError):
        assess_region(with_empty, "EMEA")


def test_monthly_run_rate_uses_average_margin_of_present_regions() -> None:
    profile = _profile(
        regions={
            "AMER": {"annual_gmv_attempts": 80_000_000, "gross_margin_percent": 40},
            "APAC": {"annual_gmv_attempts": 20_000_000, "gross_margin_percent": 60},
        },
        margin_enabled=True,
    )
    aggregate = compute_assessment(profile)["aggregate"]

    assert aggregate["average_margin_percent"] == pytest.approx(50.0)
    assert aggregate["monthly_run_rate"] == pytest.approx(aggregate["total_value"] * 0.5 / 12)


def test_monthly_run_rate_without_margin() -> None:
    aggregate = compute_assessment(_scenario_a())["aggregate"]
    assert aggregate["margin_enabled"] is False
    assert aggregate["monthly_run_rate"] == pytest.approx(aggregate["total_value"] / 12)


def test_gmv_uplift_percent() -> None:
    aggregate = compute_assessment(_scenario_a())["aggregate"]
    assert aggregate["gmv_uplift_percent"] == pytest.approx(aggregate["total_gmv_uplift"] / 75_000_000 * 100)


def test_dispute_waterfall_is_separate_from_headline() -> None:
    base = compute_assessment(_scenario_a())
    changed = compute_assessment(
        apply_profile_update(_scenario_a(), {"vendor": {"dispute_rate_percent": 10, "fraud_dispute_win_rate_percent": 90}})
    )

    assert changed["chargebacks"]["savings"] == base["chargebacks"]["savings"]
    fraud = changed["dispute_waterfalls"]["fraud"]
    assert fraud["disputed"] == pytest.approx(fraud["gross_chargebacks"] * 0.10)
    assert fraud["won"] == pytest.approx(fraud["disputed"] * 0.90)
    assert fraud["net_chargebacks"] == pytest.approx(fraud["gross_chargebacks"] - fraud["won"])


def test_legacy_config_is_selectable() -> None:
    result = compute_assessment(_scenario_a(), LEGACY_TWO_STAGE_CONFIG)
    assert result["funnel_config"] == "legacy_two_stage"
    assert result["regions"]["AMER"]["current"]["completed"] == pytest.approx(75_000_000 * 0.95 * 0.93)


def test_demo_assessments_are_finite_and_serializable() -> None:
    for profile in build_demo_profiles().values():
        result = compute_assessment(profile)
        encoded = json.dumps(result, allow_nan=False)
        assert encoded
        for region in result["regions"].values():
            assert 0.0 <= region["current"]["complete_rate"] <= 1.0
            assert region["current"]["completed"] <= region["gmv_attempts"]
            assert math.isfinite(region["gmv_uplift"])


def test_unknown_demo_profile() -> None:
    with pytest.raises(KeyError):
        get_demo_profile("missing")
