# backend/tests/test_performance.py
import dataclasses

import pytest

from backend.app.errors import ValidationError
from backend.app.services import performance
from backend.app.services.rounding import round_half_up
from backend.app.services.performance import (
    clipping_factor,
    compare_to_claim,
    estimate_ghi,
    poa_multiplier,
    ValidationResult,
    run_performance_validation,
)


@pytest.mark.parametrize(
    "lat,ghi",
    [(10, 1900), (20, 2100), (30, 1800), (40, 1500), (50, 1200),
     (15, 2100), (25, 1800), (35, 1500), (45, 1200), (-30, 1800), (None, 1900)],
)
def test_ghi_bands(lat, ghi):
    assert estimate_ghi(lat) == ghi


def test_variance_flag_threshold():
    flagged = compare_to_claim(115, 100)
    assert flagged.variance_percent == pytest.approx(15)
    assert flagged.flag_triggered is True
    assert flagged.warning == "Calculated generation differs from contractor claim by 15.0% (15.0 GWh)"

    ok = compare_to_claim(108, 100)
    assert ok.variance_percent == pytest.approx(8)
    assert ok.flag_triggered is False
    assert ok.warning is None


def test_clipping_boundary():
    assert clipping_factor(120, 100) == (1.0, None)
    factor, warning = clipping_factor(121, 100)
    assert factor == 0.98
    assert warning == "DC/AC ratio of 1.21 may result in inverter clipping (~2% loss)"


@pytest.mark.parametrize(
    "tracking,mult",
    [("single_axis", 1.25), ("Single Axis", 1.25), ("dual_axis", 1.35), ("fixed", 1.05),
     ("fixed_tilt", 1.05), ("seasonal", 1.0)],
)
def test_poa_multiplier(tracking, mult):
    assert poa_multiplier(tracking) == mult


@pytest.mark.parametrize("dc", [None, "", "abc", "0", 0, -5, "-1.5"])
def test_missing_or_non_positive_dc_raises(dc):
    with pytest.raises(ValidationError):
        run_performance_validation(1, {"dc_capacity_mw": dc})


@pytest.mark.parametrize("dc", ["0.01", 1, "100", 850.5])
def test_positive_dc_never_raises(dc):
    result = run_performance_validation(1, {"dc_capacity_mw": dc})
    assert isinstance(result, ValidationResult)
    assert result.dc_capacity_mw >= 0
    assert result.annual_generation_gwh >= 0


def test_all_defaults_from_dc_only():
    result = run_performance_validation(7, {"dc_capacity_mw": "100"})

    # ac = 85, single axis, lat 0 -> GHI 1900, losses 14+2, availability 98
    pr = (1 - 16 / 100) * 0.98
    dc_gwh = 100_000 * 1900 * 1.25 * 0.21 * pr / 1e6
    # dc/ac = 1.18, under the clipping threshold
    ac_gwh = dc_gwh * 0.985

    assert result.ac_capacity_mw == 85.0
    assert result.tracking_type == "single_axis"
    assert result.clipping_loss_factor == 1.0
    assert result.performance_ratio == pytest.approx(round(pr, 4))
    assert result.annual_generation_gwh == pytest.approx(round(ac_gwh, 2))
    assert result.capacity_factor_percent == pytest.approx(round(ac_gwh * 1000 / (85 * 8760) * 100, 1))
    assert result.specific_yield_kwh_kwp == round(ac_gwh * 1e6 / 100_000)
    assert result.ghi_source == "latitude_estimate"

    assert result.parameters_extracted_count == 1
    assert result.parameters_assumed_count == 7
    assert result.confidence_level == "LOW"
    assert result.contractor_claim_gwh is None and result.flag_triggered is False

    assert result.assumptions == (
        "AC capacity assumed as 85.0 MW (85% of DC capacity, typical for utility-scale)",
        "Single-axis tracking assumed (most common for utility-scale solar)",
        "Annual GHI estimated as 1900 kWh/m² based on latitude 0.00°",
        "System losses assumed as 14% (industry standard for utility-scale PV)",
        "System availability assumed as 98% (typical for utility-scale with O&M)",
        "Soiling losses assumed as 2% (moderate desert environment)",
        "Degradation rate assumed as 0.5%/year (modern bifacial modules)",
    )
    assert result.warnings == ("Location coordinates missing - using default irradiance values",)


def test_fully_specified_high_confidence_and_claim_flag():
    params = {
        "dc_capacity_mw": "130",
        "ac_capacity_mw": "100",
        "tracking_type": "fixed_tilt",
        "latitude": "35.9",
        "longitude": "14.4",
        "ghi_annual_kwh_m2": "1900",
        "system_losses_percent": "12",
        "availability_percent": "99",
        "soiling_loss_percent": "1",
        "degradation_rate_percent": "0.4",
        "p50_generation_gwh": "300",
    }
    result = run_performance_validation(3, params)

    assert result.parameters_extracted_count == 8
    assert result.parameters_assumed_count == 0
    assert result.confidence_level == "HIGH"
    assert result.assumptions == ()
    assert result.clipping_loss_factor == 0.98
    assert result.total_system_losses_percent == 13.0
    assert result.degradation_rate_percent == 0.4
    assert result.flag_triggered is True
    assert result.contractor_claim_gwh == 300.0
    assert result.variance_percent < -10
    assert result.warnings[0].startswith("DC/AC ratio of 1.30")
    assert result.warnings[1].startswith("Calculated generation differs from contractor claim by")


def test_degradation_does_not_change_energy():
    base = run_performance_validation(1, {"dc_capacity_mw": 50, "degradation_rate_percent": 0.3})
    other = run_performance_validation(1, {"dc_capacity_mw": 50, "degradation_rate_percent": 2.0})
    assert base.annual_generation_gwh == other.annual_generation_gwh


def test_fallback_ghi_used_before_latitude_table():
    result = run_performance_validation(
        1, {"dc_capacity_mw": 10, "latitude": 52, "longitude": 0}, fallback_ghi=1050
    )
    assert result.ghi_annual_kwh_m2 == 1050
    assert result.ghi_source == "open-meteo"
    assert result.warnings == ()


def test_result_is_frozen_and_serializable():
    result = run_performance_validation(1, {"dc_capacity_mw": 10})
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.annual_generation_gwh = 0  # type: ignore[misc]
    d = result.to_dict()
    assert isinstance(d["assumptions"], list)
    assert d["calculation_id"].startswith("CALC_")


def test_confidence_bands():
    assert performance.confidence_level(7, 3) == "HIGH"
    assert performance.confidence_level(4, 6) == "MEDIUM"
    assert performance.confidence_level(3, 7) == "LOW"


@pytest.mark.parametrize(
    "value,ndigits,expected",
    [(2.5, 0, 3.0), (0.125, 2, 0.13), (-1.25, 1, -1.3), (1.005, 2, 1.0)],
)
def test_round_half_up_matches_fixed_point_output(value, ndigits, expected):
    assert round_half_up(value, ndigits) == expected
