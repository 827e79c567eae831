"""
Unit tests for KMZ fiber reconciliation (span level and pole level).
"""

import pytest

from spidaqc.config import QCSettings
from spidaqc.fiber_compare import (
    COORDINATE_MATCH,
    DIRECT_ID_MATCH,
    classify_fiber_counts,
    extract_span_fiber_data,
    fiber_comparison_frame,
    kmz_features_to_fiber_data,
    match_kmz_to_poles,
    process_fiber_comparison_data,
)
from spidaqc.models import Coordinates, FiberMatchStatus, KmzFiberData, KmzPoleMatch, Pole

from conftest import P1_COORDS, SPAN_MIDPOINT, find_design


def _kmz(lat, lon, capafo="48", **extra):
    props = {"cb_capafo": capafo, **extra}
    return KmzFiberData(Coordinates(lat, lon), fiber_size=capafo, properties=props)


def test_features_to_fiber_data():
    collection = {"type": "FeatureCollection", "features": [
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-106.0, 35.0]},
         "properties": {"cb_capafo": "144", "pole_id": "P1", "description": "Gigapower"}},
        {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[-106.1, 35.1], [-106.2, 35.2]]},
         "properties": {"fiber_size": "96ct", "fiber_count": 96}},
        {"type": "Feature", "geometry": None, "properties": {}},
        "not a feature",
    ]}
    data = kmz_features_to_fiber_data(collection)
    assert len(data) == 3
    first, second, third = data
    assert first.coordinates == Coordinates(35.0, -106.0)
    assert first.fiber_size == "144"
    assert first.fiber_count == 144
    assert first.pole_id == "P1"
    assert first.properties["cb_capafo"] == "144"
    assert second.coordinates == Coordinates(35.1, -106.1)
    assert second.fiber_count == 96
    assert third.coordinates is None
    assert third.pole_id is None


def test_span_fiber_data_from_proposed_weps(spida_job):
    spans = extract_span_fiber_data(spida_job)
    assert [(s.from_pole_label, s.to_pole_label) for s in spans] == [("P1", "P2"), ("P2", "P1")]
    span = spans[0]
    assert span.proposed_fiber_count == 48
    assert span.remedy_fiber_count == 48
    assert span.proposed_fiber_size == "48ct GIG"
    assert span.proposed_wire_ids == ["W1"]
    assert span.status is FiberMatchStatus.NO_KMZ_DATA_LOADED


def test_span_without_gigapower_fiber_is_skipped(spida_job):
    for label in ("Recommended Design", "Remedy"):
        find_design(spida_job, "P1", label)["structure"]["wires"][0]["owner"] = {"id": "Comcast"}
    spans = extract_span_fiber_data(spida_job)
    assert [s.from_pole_label for s in spans] == ["P2"]


def test_unknown_far_pole_label(spida_job):
    find_design(spida_job, "P1", "Recommended Design")["structure"]["wireEndPoints"][0]["externalId"] = "P77"
    spans = extract_span_fiber_data(spida_job)
    assert spans[0].to_pole_label == "Unknown (P77)"


def test_no_kmz_loaded(spida_job, parsed_job):
    rows = process_fiber_comparison_data(spida_job, [], parsed_job.poles)
    assert rows and all(r.status is FiberMatchStatus.NO_KMZ_DATA_LOADED for r in rows)
    assert process_fiber_comparison_data({}, [_kmz(*SPAN_MIDPOINT)], parsed_job.poles) == []


def test_kmz_at_span_midpoint_matches(spida_job, parsed_job):
    rows = process_fiber_comparison_data(spida_job, [_kmz(*SPAN_MIDPOINT)], parsed_job.poles)
    assert all(r.status is FiberMatchStatus.MATCH for r in rows)
    assert rows[0].kmz_fiber_size == "48"
    assert rows[0].kmz_fiber_count == 48
    assert rows[0].kmz_distance_m == pytest.approx(0.0, abs=0.5)


def test_kmz_count_differs(spida_job, parsed_job):
    rows = process_fiber_comparison_data(spida_job, [_kmz(*SPAN_MIDPOINT, capafo="96")], parsed_job.poles)
    assert rows[0].status is FiberMatchStatus.MISMATCH


def test_kmz_sixty_metres_away_is_not_nearby(spida_job, parsed_job):
    # 0.00054° of latitude is ~60 m
    lat, lon = SPAN_MIDPOINT
    rows = process_fiber_comparison_data(spida_job, [_kmz(lat + 0.00054, lon)], parsed_job.poles)
    assert all(r.status is FiberMatchStatus.NO_KMZ_NEARBY for r in rows)
    assert rows[0].kmz_fiber_size == "N/A"


def test_kmz_radius_is_configurable(spida_job, parsed_job):
    lat, lon = SPAN_MIDPOINT
    settings = QCSettings(span_kmz_radius_m=100.0)
    rows = process_fiber_comparison_data(spida_job, [_kmz(lat + 0.00054, lon)], parsed_job.poles, settings)
    assert rows[0].status is FiberMatchStatus.MATCH


def test_pole_without_coordinates(spida_job, parsed_job):
    parsed_job.poles[1].coordinates = None
    rows = process_fiber_comparison_data(spida_job, [_kmz(*SPAN_MIDPOINT)], parsed_job.poles)
    assert all(r.status is FiberMatchStatus.NO_POLE_COORDS for r in rows)


@pytest.mark.parametrize("proposed,remedy,kmz,expected", [
    (48, 48, 48, FiberMatchStatus.MATCH),
    (48, 96, 96, FiberMatchStatus.MATCH),
    (48, 48, 96, FiberMatchStatus.MISMATCH),
    (48, 0, 0, FiberMatchStatus.JSON_ONLY),
    (0, 0, 144, FiberMatchStatus.KMZ_ONLY),
    (0, 0, 0, FiberMatchStatus.NO_FIBER_FOUND),
])
def test_classify_fiber_counts(proposed, remedy, kmz, expected):
    assert classify_fiber_counts(proposed, remedy, kmz) is expected


def test_fiber_comparison_frame(spida_job, parsed_job):
    rows = process_fiber_comparison_data(spida_job, [_kmz(*SPAN_MIDPOINT)], parsed_job.poles)
    df = fiber_comparison_frame(rows)
    assert len(df) == 2
    assert df.iloc[0]["Status"] == "MATCH"
    assert df.iloc[0]["From Pole"] == "P1"


def test_direct_id_match(parsed_job):
    # far from every pole, but the id wins
    entry = _kmz(36.0, -107.0, capafo="48")
    entry.pole_id = "P2"
    matches = match_kmz_to_poles([entry], parsed_job.poles)
    assert len(matches) == 1
    match = matches[0]
    assert match.pole.structure_id == "P2"
    assert match.match_type == DIRECT_ID_MATCH
    assert match.distance == 0.0
    assert match.proposed_fiber_sizes == [48]
    assert match.has_match


def test_coordinate_match_picks_nearest_pole(parsed_job):
    lat, lon = P1_COORDS
    matches = match_kmz_to_poles([_kmz(lat + 0.0001, lon, capafo="96")], parsed_job.poles)
    match = matches[0]
    assert match.pole.structure_id == "P1"
    assert match.match_type == COORDINATE_MATCH
    assert match.distance == pytest.approx(100.0, rel=1e-6)
    assert match.kmz_fiber_count == 96
    assert not match.has_match


def test_entries_without_capacity_are_skipped(parsed_job):
    entry = KmzFiberData(Coordinates(*P1_COORDS))
    assert match_kmz_to_poles([entry], parsed_job.poles) == []


def test_far_threshold_used_when_few_close_matches(parsed_job):
    # ~85 units of 1e-5° from P1: squared distance 7225, between the thresholds
    lat, lon = P1_COORDS
    matches = match_kmz_to_poles([_kmz(lat + 0.00085, lon)], parsed_job.poles)
    assert len(matches) == 1
    assert 5000 < matches[0].distance < 10000


def test_matches_sorted_by_distance(parsed_job):
    lat, lon = P1_COORDS
    entries = [_kmz(lat + 0.0003, lon), _kmz(lat + 0.0001, lon)]
    distances = [m.distance for m in match_kmz_to_poles(entries, parsed_job.poles)]
    assert distances == sorted(distances)


MALFORMED_EXPORTS = [
    None,
    "not a job",
    [],
    {"leads": "x"},
    {"leads": [{"locations": 5}]},
    {"locations": {"label": "P1"}},
    {"leads": [{"locations": [{"label": "P1", "designs": {"x": 1}}]}]},
    {"leads": [{"locations": [{"label": "P1", "designs": ["bad", 3]}]}]},
    {"leads": [{"locations": [{"label": "P1", "designs": [
        {"label": "Recommended Design", "structure": ["bad"]}]}]}]},
    {"leads": [{"locations": [{"label": "P1", "designs": [
        {"label": "Recommended Design", "structure": {"wires": 4, "wireEndPoints": "x"}}]}]}]},
    {"leads": [{"locations": [{"label": "P1", "designs": [
        {"label": "Recommended Design", "structure": {
            "pole": "P1",
            "wires": [{"id": "W1", "owner": {"id": "Gigapower"}, "size": "48ct"}],
            "wireEndPoints": [{"type": "NEXT_POLE", "externalId": "P2", "wires": 7}],
        }}]}]}]},
]


@pytest.mark.parametrize("data", MALFORMED_EXPORTS)
def test_malformed_export_yields_no_spans(data, parsed_job):
    assert extract_span_fiber_data(data) == []
    assert process_fiber_comparison_data(data, [_kmz(*SPAN_MIDPOINT)], parsed_job.poles) == []


def test_fiber_count_used_when_capafo_text_has_no_count(parsed_job):
    entry = _kmz(36.0, -107.0, capafo="see map")
    entry.pole_id = "P1"
    entry.fiber_count = 48
    match = match_kmz_to_poles([entry], parsed_job.poles)[0]
    assert match.kmz_fiber_count == 48
    assert match.has_match


def test_span_uses_fiber_count_when_capafo_text_has_no_count(spida_job, parsed_job):
    entry = _kmz(*SPAN_MIDPOINT, capafo="pending")
    entry.fiber_count = 48
    rows = process_fiber_comparison_data(spida_job, [entry], parsed_job.poles)
    assert rows[0].kmz_fiber_size == "pending"
    assert rows[0].kmz_fiber_count == 48
    assert rows[0].status is FiberMatchStatus.MATCH


def test_zero_kmz_count_is_never_a_match():
    match = KmzPoleMatch(KmzFiberData(None), Pole("P9"), 0.0, DIRECT_ID_MATCH)
    assert match.proposed_fiber_sizes == [] and match.kmz_fiber_count == 0
    assert not match.has_match
