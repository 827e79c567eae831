"""
Unit tests for the per-pole QC rules and their aggregation.
"""

import pytest

from spidaqc.config import QCSettings
from spidaqc.models import (
    EXISTING,
    PROPOSED,
    REMEDY,
    AnalysisResults,
    ClientItem,
    Coordinates,
    KmzFiberData,
    Measurement,
    Owner,
    Pole,
    PoleAttachment,
    PoleLayer,
    PoleWire,
    ProjectInfo,
    QCCheckResult,
    QCResults,
    QCStatus,
    WireEndPoint,
)
from spidaqc.qc_checks import (
    check_anchors,
    check_fiber_size,
    check_layer_comparison,
    check_load_cases,
    check_messenger_size,
    check_owners,
    check_pole_stress,
    check_project_settings,
    check_station_name,
    check_wire_end_point_order,
    overall_status,
    run_all_qc_checks,
    run_qc_checks,
    summarize_results,
)


def _attachment(att_id, owner, kind, height=9.0, description="", size=None):
    return PoleAttachment(
        id=att_id,
        description=description or kind.title(),
        owner=Owner(owner),
        height=Measurement(height),
        height_in_feet=f"{height:.1f} m",
        attachment_type=kind,
        size=size,
    )


def _pole(structure_id="P1", coordinates=None, **layers):
    return Pole(
        structure_id,
        label=structure_id,
        coordinates=coordinates,
        layers={name: PoleLayer(name, **kwargs) for name, kwargs in layers.items()},
    )


def _bundle(messenger):
    return PoleWire(id="W1", owner=Owner("Gigapower"), usage_group="COMMUNICATION_BUNDLE",
                    client_item=ClientItem(size="48ct", messenger_size=messenger))


def _weps(*ids):
    return [WireEndPoint(id=i) for i in ids]


@pytest.fixture
def full_project():
    return ProjectInfo(
        engineer="J. Smith",
        comments="ok",
        general_location="Albuquerque",
        address={"city": "Albuquerque"},
        default_load_cases=["NESC Medium B"],
    )


# ---------------------------------------------------------------------------
# owners / anchors
# ---------------------------------------------------------------------------

def test_owner_mismatch_fails():
    wire = PoleWire(id="W1", owner=Owner("Gigapower"), associated_attachments=["I1"])
    pole = _pole(REMEDY={"attachments": [_attachment("I1", "PNM", "INSULATOR")], "wires": [wire]})
    result = check_owners(pole)
    assert result.status is QCStatus.FAIL
    assert result.details == ["In REMEDY layer: Wire owned by Gigapower is connected to attachment owned by PNM"]


def test_consistent_owners_pass():
    wire = PoleWire(id="W1", owner=Owner("PNM"), associated_attachments=["I1", "MISSING"])
    pole = _pole(PROPOSED={"attachments": [_attachment("I1", "PNM", "INSULATOR")], "wires": [wire]})
    assert check_owners(pole).status is QCStatus.PASS


def test_pnm_guy_without_anchor_fails():
    pole = _pole(PROPOSED={"attachments": [_attachment("G1", "PNM", "GUY", size="3/8")]})
    result = check_anchors(pole)
    assert result.status is QCStatus.FAIL
    assert result.message == "Found 1 anchor/guy wire issues"


def test_pnm_guy_with_12_inch_anchor_passes():
    attachments = [
        _attachment("G1", "PNM", "GUY", size="3/8"),
        _attachment("A1", "PNM", "ANCHOR", height=0.0, description='Anchor 12" single helix'),
    ]
    assert check_anchors(_pole(PROPOSED={"attachments": attachments})).status is QCStatus.PASS


def test_guy_size_reported_but_not_enforced_by_default():
    attachments = [
        _attachment("G1", "PNM", "GUY", size="5/16"),
        _attachment("A1", "PNM", "ANCHOR", height=0.0, size='12"'),
    ]
    pole = _pole(REMEDY={"attachments": attachments})
    result = check_anchors(pole)
    assert result.status is QCStatus.PASS
    assert len(result.details) == 1
    assert "guy wire size" in result.details[0]

    assert check_anchors(pole, QCSettings(enforce_guy_size=True)).status is QCStatus.FAIL


def test_non_pnm_guys_are_ignored():
    pole = _pole(PROPOSED={"attachments": [_attachment("G1", "Comcast", "GUY")]})
    assert check_anchors(pole).status is QCStatus.PASS


# ---------------------------------------------------------------------------
# layer comparison / stress
# ---------------------------------------------------------------------------

def test_layer_comparison_needs_existing():
    result = check_layer_comparison(_pole(PROPOSED={}))
    assert result.status is QCStatus.NOT_CHECKED
    assert result.message == "No EXISTING layer found for comparison"


def test_layer_comparison_flags_owner_change():
    pole = _pole(
        EXISTING={"attachments": [_attachment("I1", "PNM", "INSULATOR")]},
        REMEDY={"attachments": [_attachment("I1", "Gigapower", "INSULATOR")]},
    )
    result = check_layer_comparison(pole)
    assert result.status is QCStatus.WARNING
    assert result.details[0].startswith('Attachment owner changed from "PNM" in EXISTING to "Gigapower" in REMEDY')


def test_layer_comparison_flags_usage_group_change():
    old = PoleWire(id="W1", owner=Owner("PNM"), usage_group="PRIMARY")
    new = PoleWire(id="W1", owner=Owner("PNM"), usage_group="NEUTRAL")
    result = check_layer_comparison(_pole(EXISTING={"wires": [old]}, PROPOSED={"wires": [new]}))
    assert result.status is QCStatus.WARNING
    assert "usage group" in result.details[0]


def test_layer_comparison_unchanged_passes():
    att = _attachment("I1", "PNM", "INSULATOR")
    assert check_layer_comparison(_pole(EXISTING={"attachments": [att]},
                                        PROPOSED={"attachments": [att]})).status is QCStatus.PASS


def _stress_pole(before, after):
    return _pole(EXISTING={"analysis_results": AnalysisResults(before)},
                 REMEDY={"analysis_results": AnalysisResults(after)})


def test_small_stress_change_passes():
    result = check_pole_stress(_stress_pole(0.50, 0.55))
    assert result.status is QCStatus.PASS
    assert result.message == "Pole stress change is within acceptable limits (10.0%)"


def test_large_stress_change_warns():
    result = check_pole_stress(_stress_pole(0.50, 0.70))
    assert result.status is QCStatus.WARNING
    assert result.details == ["EXISTING stress ratio: 0.50", "REMEDY stress ratio: 0.70", "Change: +40.0%"]


def test_stress_from_zero_counts_as_full_change():
    result = check_pole_stress(_stress_pole(0.0, 0.3))
    assert result.status is QCStatus.WARNING
    assert "100.0%" in result.message


def test_stress_threshold_is_configurable():
    assert check_pole_stress(_stress_pole(0.50, 0.70), QCSettings(stress_change_pct=50.0)).status is QCStatus.PASS


def test_stress_without_data_is_not_checked():
    assert check_pole_stress(_stress_pole(None, 0.3)).status is QCStatus.NOT_CHECKED
    assert check_pole_stress(_pole(REMEDY={})).status is QCStatus.NOT_CHECKED


# ---------------------------------------------------------------------------
# project level
# ---------------------------------------------------------------------------

def test_station_name_case():
    assert check_station_name(_pole("P-101")).status is QCStatus.PASS
    result = check_station_name(_pole("p-101"))
    assert result.status is QCStatus.FAIL
    assert result.details == ['Station name "p-101" should use uppercase letters only']


def test_load_cases(full_project):
    assert check_load_cases(_pole(), full_project).status is QCStatus.PASS

    full_project.default_load_cases = ["GO95 Heavy"]
    result = check_load_cases(_pole(), full_project)
    assert result.status is QCStatus.FAIL
    assert result.details == ['Required load case "NESC Medium B" is not defined']

    full_project.default_load_cases = None
    assert check_load_cases(_pole(), full_project).status is QCStatus.WARNING


def test_load_case_match_is_substring(full_project):
    full_project.default_load_cases = ["NESC Medium B - Rule 250B"]
    assert check_load_cases(_pole(), full_project).status is QCStatus.PASS


def test_project_settings(full_project):
    assert check_project_settings(full_project).status is QCStatus.PASS
    full_project.engineer = ""
    full_project.address = {}
    result = check_project_settings(full_project)
    assert result.status is QCStatus.WARNING
    assert result.details == ["Missing or empty project setting: Engineer",
                              "Missing or empty project setting: Address"]


# ---------------------------------------------------------------------------
# messenger / fiber
# ---------------------------------------------------------------------------

def test_standard_messenger_passes():
    assert check_messenger_size(_pole(PROPOSED={"wires": [_bundle('1/4" EHS')]})).status is QCStatus.PASS


def test_nonstandard_messenger_fails():
    result = check_messenger_size(_pole(REMEDY={"wires": [_bundle("5/16")]}))
    assert result.status is QCStatus.FAIL
    assert result.details == ['Communication bundle in REMEDY layer has non-standard messenger size: "5/16"']


def test_missing_messenger_fails():
    result = check_messenger_size(_pole(REMEDY={"wires": [_bundle("")]}))
    assert result.status is QCStatus.FAIL
    assert "missing messenger size" in result.details[0]


def _fiber_pole(*sizes):
    wires = [PoleWire(id=f"W{i}", owner=Owner("Gigapower"), client_item=ClientItem(size=s))
             for i, s in enumerate(sizes)]
    return _pole("P1", Coordinates(35.0, -106.0), PROPOSED={"wires": wires}, REMEDY={"wires": list(wires)})


def _gigapower_kmz(capafo, lat=35.0, lon=-106.0, pole_id=None):
    return KmzFiberData(Coordinates(lat, lon), pole_id=pole_id,
                        properties={"cb_capafo": capafo, "owner": "Gigapower"})


def test_fiber_without_kmz_is_not_checked():
    assert check_fiber_size(_fiber_pole("48ct")).status is QCStatus.NOT_CHECKED


def test_fiber_counts_match_kmz():
    result = check_fiber_size(_fiber_pole("48ct", "96ct"), [_gigapower_kmz("144")])
    assert result.status is QCStatus.PASS
    assert result.details[0] == "Fiber count matches in PROPOSED: 48 + 96 = 144 fibers equals KMZ cb_capafo value of 144"


def test_fiber_count_mismatch_fails():
    result = check_fiber_size(_fiber_pole("48ct"), [_gigapower_kmz("96")])
    assert result.status is QCStatus.FAIL
    assert result.details[0] == ("Fiber count mismatch in PROPOSED: SPIDAcalc has 48 fibers, "
                                 "but KMZ has 96 fibers (cb_capafo value)")


def test_fiber_kmz_found_by_pole_id():
    kmz = _gigapower_kmz("48", lat=36.0, lon=-107.0, pole_id="P1")
    assert check_fiber_size(_fiber_pole("48ct"), [kmz]).status is QCStatus.PASS


def test_no_kmz_near_pole_warns():
    result = check_fiber_size(_fiber_pole("48ct"), [_gigapower_kmz("48", lat=35.01)])
    assert result.status is QCStatus.WARNING
    assert result.message == "No fiber data found in KMZ near this pole"


def test_non_gigapower_kmz_passes():
    kmz = KmzFiberData(Coordinates(35.0, -106.0), properties={"cb_capafo": "48", "owner": "Comcast"})
    result = check_fiber_size(_fiber_pole("48ct"), [kmz])
    assert result.status is QCStatus.PASS
    assert result.message == "No Gigapower fiber data found in KMZ for this pole"


# ---------------------------------------------------------------------------
# wire end point order
# ---------------------------------------------------------------------------

def test_wire_end_point_order_matches():
    pole = _pole(PROPOSED={"wire_end_points": _weps("A", "B", "C")},
                 REMEDY={"wire_end_points": _weps("A", "X", "B", "C")})
    assert check_wire_end_point_order(pole).status is QCStatus.PASS


def test_adjacent_swap_fails():
    pole = _pole(PROPOSED={"wire_end_points": _weps("A", "B", "C")},
                 REMEDY={"wire_end_points": _weps("A", "C", "B")})
    result = check_wire_end_point_order(pole)
    assert result.status is QCStatus.FAIL
    assert result.details[:2] == ["PROPOSED order: A, B, C", "REMEDY order: A, C, B"]
    assert result.details[2] == "B comes before C in PROPOSED but after it in REMEDY"


def test_wire_end_point_order_needs_both_layers():
    assert check_wire_end_point_order(_pole(PROPOSED={"wire_end_points": _weps("A")})).status \
        is QCStatus.NOT_CHECKED
    disjoint = _pole(PROPOSED={"wire_end_points": _weps("A")}, REMEDY={"wire_end_points": _weps("B")})
    assert check_wire_end_point_order(disjoint).status is QCStatus.NOT_CHECKED


# ---------------------------------------------------------------------------
# aggregation
# ---------------------------------------------------------------------------

def test_overall_status_precedence():
    assert overall_status([QCStatus.PASS, QCStatus.WARNING, QCStatus.FAIL]) is QCStatus.FAIL
    assert overall_status([QCStatus.PASS, QCStatus.WARNING, QCStatus.NOT_CHECKED]) is QCStatus.WARNING
    assert overall_status([QCStatus.PASS, QCStatus.NOT_CHECKED]) is QCStatus.PASS
    assert overall_status([QCStatus.NOT_CHECKED]) is QCStatus.NOT_CHECKED
    assert overall_status([]) is QCStatus.NOT_CHECKED


def test_adding_a_failure_never_improves_overall():
    results = QCResults(owner_check=QCCheckResult(QCStatus.PASS), anchor_check=QCCheckResult(QCStatus.WARNING))
    assert summarize_results(results).overall_status is QCStatus.WARNING
    results.station_name_check = QCCheckResult(QCStatus.FAIL)
    summarize_results(results)
    assert results.overall_status is QCStatus.FAIL
    assert (results.pass_count, results.warning_count, results.fail_count) == (1, 1, 1)


def test_run_qc_checks_fills_every_rule(full_project):
    results = run_qc_checks(_fiber_pole("48ct"), full_project)
    assert results.owner_check.status is QCStatus.PASS
    assert results.fiber_size_check.status is QCStatus.NOT_CHECKED
    # slots without a rule stay untouched
    assert results.glc_check.status is QCStatus.NOT_CHECKED
    assert results.pass_count + results.fail_count + results.warning_count <= len(results.checks())


def test_run_all_qc_checks(parsed_job):
    summary = run_all_qc_checks(parsed_job)
    assert summary.total_poles == 2
    assert set(summary.pole_results) == {"P1", "P2"}
    assert summary.valid_poles + summary.invalid_poles == 2
    assert all(p.qc_results is not None for p in parsed_job.poles)
    p1 = parsed_job.poles[0].qc_results
    assert p1.load_case_check.status is QCStatus.PASS
    assert p1.wire_end_point_order_check.status is QCStatus.PASS
    assert p1.messenger_size_check.status is QCStatus.PASS
    assert summary.total_checks == summary.pass_count + summary.fail_count + summary.warning_count
