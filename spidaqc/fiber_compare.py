"""fiber_compare.py – reconcile SPIDA fiber counts with the KMZ fiber map.

Two passes are offered:

* :func:`match_kmz_to_poles` pairs each KMZ point with a pole (direct id,
  else nearest pole) for the fiber map view.
* :func:`process_fiber_comparison_data` walks every Gigapower span in the
  raw export, finds the KMZ point nearest the span midpoint and classifies
  the counts with a :class:`FiberMatchStatus`.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .config import QCSettings
from .fiber import capafo_count, extract_fiber_size, find_fiber_wires, get_capafo_value, is_gigapower_owned
from .formatting import safe_display_value, to_float
from .geo import haversine_m, midpoint, squared_coordinate_distance
from .models import (
    PROPOSED,
    REMEDY,
    Coordinates,
    FiberMatchStatus,
    KmzFiberData,
    KmzPoleMatch,
    Pole,
    PoleWire,
    ProcessedSpanData,
)
from .parsers import _as_dict, _as_list, layer_key, wire_from_json

log = logging.getLogger(__name__)

POLE_WEP_TYPES = ("NEXT_POLE", "PREVIOUS_POLE", "OTHER_POLE")
DIRECT_ID_MATCH = "Direct ID match"
COORDINATE_MATCH = "Coordinate match"

# ---------------------------------------------------------------------------
# KMZ feature boundary
# ---------------------------------------------------------------------------

def _feature_coordinates(geometry: Any) -> Optional[Coordinates]:
    """Point → [lon, lat]; LineString → first vertex; Multi* → first vertex of first part."""
    if not isinstance(geometry, dict):
        return None
    coords = geometry.get("coordinates")
    while isinstance(coords, list) and coords and isinstance(coords[0], list):
        coords = coords[0]
    if not isinstance(coords, list) or len(coords) < 2:
        return None
    lon, lat = to_float(coords[0]), to_float(coords[1])
    if lat is None or lon is None:
        return None
    return Coordinates(latitude=lat, longitude=lon)


def _first_prop(props: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = safe_display_value(props.get(name))
        if value:
            return value
    return ""


def kmz_features_to_fiber_data(features: Any) -> List[KmzFiberData]:
    """GeoJSON-like features (or a FeatureCollection) → KmzFiberData list."""
    if isinstance(features, dict):
        features = features.get("features", [])
    result: List[KmzFiberData] = []
    for feature in features or []:
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") if isinstance(feature.get("properties"), dict) else {}
        fiber_size = _first_prop(props, "fiber_size", "fiberSize", "cb_capafo")
        count = to_float(props.get("fiber_count", props.get("fiberCount")))
        result.append(KmzFiberData(
            coordinates=_feature_coordinates(feature.get("geometry")),
            fiber_size=fiber_size,
            fiber_count=int(count) if count is not None else capafo_count(fiber_size),
            description=_first_prop(props, "description"),
            pole_id=_first_prop(props, "pole_id", "poleId") or None,
            properties=dict(props),
        ))
    log.info("loaded %d KMZ fiber features", len(result))
    return result


# ---------------------------------------------------------------------------
# pole-level matching
# ---------------------------------------------------------------------------

def _direct_match(kmz_id: str, poles: List[Pole]) -> Optional[Pole]:
    for pole in poles:
        sid = pole.structure_id
        if sid and (sid == kmz_id or kmz_id in sid or sid in kmz_id):
            return pole
    return None


def _nearest_pole(point: Coordinates, poles: List[Pole]) -> Tuple[Optional[Pole], float]:
    nearest, best = None, float("inf")
    for pole in poles:
        if pole.coordinates is None:
            continue
        dist = squared_coordinate_distance(point, pole.coordinates)
        if dist < best:
            nearest, best = pole, dist
    return nearest, best


def _fiber_sizes(pole: Pole, layer_name: str) -> List[int]:
    return [extract_fiber_size(w) for w in find_fiber_wires(pole, layer_name)]


def match_kmz_to_poles(kmz_data: List[KmzFiberData], poles: List[Pole],
                       settings: Optional[QCSettings] = None) -> List[KmzPoleMatch]:
    """Pair KMZ points with poles, nearest first.

    Only entries with coordinates and a capacity value take part.  When the
    close threshold matches fewer than half of them, the far threshold is
    used for the whole set instead.
    """
    settings = settings or QCSettings()
    valid = [k for k in kmz_data if k.coordinates is not None and get_capafo_value(k)]

    candidates: List[KmzPoleMatch] = []
    for entry in valid:
        pole, distance, match_type = None, float("inf"), COORDINATE_MATCH
        if entry.pole_id:
            pole = _direct_match(entry.pole_id, poles)
            if pole is not None:
                distance, match_type = 0.0, DIRECT_ID_MATCH
        if pole is None:
            pole, distance = _nearest_pole(entry.coordinates, poles)
        if pole is None:
            continue
        capafo = get_capafo_value(entry) or ""
        candidates.append(KmzPoleMatch(
            kmz_data=entry,
            pole=pole,
            distance=distance,
            match_type=match_type,
            cb_capafo=capafo,
            kmz_fiber_count=capafo_count(capafo) or entry.fiber_count,
            proposed_fiber_sizes=_fiber_sizes(pole, PROPOSED),
            remedy_fiber_sizes=_fiber_sizes(pole, REMEDY),
        ))

    def within(threshold: float) -> List[KmzPoleMatch]:
        return [m for m in candidates if m.match_type == DIRECT_ID_MATCH or m.distance < threshold]

    matches = within(settings.kmz_close_threshold)
    if len(matches) < len(valid) * settings.kmz_min_match_ratio:
        log.info("only %d of %d KMZ entries matched; retrying with far threshold",
                 len(matches), len(valid))
        matches = within(settings.kmz_far_threshold)

    return sorted(matches, key=lambda m: m.distance)


# ---------------------------------------------------------------------------
# span-level reconciliation
# ---------------------------------------------------------------------------

def _pole_label_lookup(locations: List[dict]) -> Dict[str, str]:
    """pole externalId → location label, from the first design of each location."""
    lookup: Dict[str, str] = {}
    for loc in locations:
        designs = _as_list(loc.get("designs"))
        if not designs:
            continue
        structure = _as_dict(_as_dict(designs[0]).get("structure"))
        pole = structure.get("pole")
        if not isinstance(pole, dict):
            continue
        ext_id = safe_display_value(pole.get("externalId"))
        label = safe_display_value(loc.get("label"))
        if ext_id and label:
            lookup[ext_id] = label
    return lookup


def _fiber_info(wires: Dict[str, PoleWire], wire_ids: Iterable[str]) -> Tuple[int, str, List[str]]:
    """(summed count, joined size strings or "N/A", Gigapower wire ids) for one WEP."""
    total, sizes, ids = 0, [], []
    for wire_id in wire_ids:
        wire = wires.get(wire_id)
        if wire is None or not is_gigapower_owned(wire):
            continue
        ids.append(wire_id)
        size = wire.client_item.size or wire.size or wire.description
        if size and size not in sizes:
            sizes.append(size)
        total += extract_fiber_size(wire)
    return total, ", ".join(sizes) if sizes else "N/A", ids


def _design_parts(design: Optional[dict]) -> Tuple[Dict[str, PoleWire], List[dict]]:
    structure = _as_dict(_as_dict(design).get("structure"))
    wires = {}
    for raw in _as_list(structure.get("wires")):
        if isinstance(raw, dict) and raw.get("id"):
            wire = wire_from_json(raw)
            wires[wire.id] = wire
    weps = [w for w in _as_list(structure.get("wireEndPoints")) if isinstance(w, dict)]
    return wires, weps


def _locations(data: Any) -> List[dict]:
    if not isinstance(data, dict):
        return []
    locs = [loc for lead in _as_list(data.get("leads")) if isinstance(lead, dict)
            for loc in _as_list(lead.get("locations"))]
    if not locs:
        locs = _as_list(data.get("locations"))
    return [loc for loc in locs if isinstance(loc, dict)]


def extract_span_fiber_data(data: Any) -> List[ProcessedSpanData]:
    """Spans leaving each location's PROPOSED design that carry Gigapower fiber."""
    locations = _locations(data)
    labels = _pole_label_lookup(locations)
    spans: List[ProcessedSpanData] = []

    for loc in locations:
        from_label = safe_display_value(loc.get("label"))
        if not from_label:
            continue
        designs = [d for d in _as_list(loc.get("designs")) if isinstance(d, dict)]
        proposed = next((d for d in designs if layer_key(d) == PROPOSED), None)
        remedy = next((d for d in designs if layer_key(d) == REMEDY), None)
        if proposed is None:
            continue

        prop_wires, prop_weps = _design_parts(proposed)
        rem_wires, rem_weps = _design_parts(remedy)

        for wep in prop_weps:
            to_ext = safe_display_value(wep.get("externalId"))
            if wep.get("type") not in POLE_WEP_TYPES or not to_ext:
                continue

            p_ids_raw = map(safe_display_value, _as_list(wep.get("wires")))
            p_count, p_size, p_ids = _fiber_info(prop_wires, p_ids_raw)
            r_count, r_size, r_ids = 0, "N/A", []
            rem_wep = next((w for w in rem_weps if safe_display_value(w.get("externalId")) == to_ext), None)
            if rem_wep is not None:
                r_ids_raw = map(safe_display_value, _as_list(rem_wep.get("wires")))
                r_count, r_size, r_ids = _fiber_info(rem_wires, r_ids_raw)

            if p_count > 0 or r_count > 0:
                spans.append(ProcessedSpanData(
                    from_pole_label=from_label,
                    to_pole_label=labels.get(to_ext, f"Unknown ({to_ext})"),
                    proposed_fiber_size=p_size,
                    remedy_fiber_size=r_size,
                    proposed_fiber_count=p_count,
                    remedy_fiber_count=r_count,
                    proposed_wire_ids=p_ids,
                    remedy_wire_ids=r_ids,
                ))
    return spans


def classify_fiber_counts(proposed: int, remedy: int, kmz: int) -> FiberMatchStatus:
    """Exact comparison of JSON counts against a nearby KMZ count."""
    if (proposed > 0 and proposed == kmz) or (remedy > 0 and remedy == kmz):
        return FiberMatchStatus.MATCH
    has_json = proposed > 0 or remedy > 0
    has_kmz = kmz > 0
    if has_json and has_kmz:
        return FiberMatchStatus.MISMATCH
    if has_json:
        return FiberMatchStatus.JSON_ONLY
    if has_kmz:
        return FiberMatchStatus.KMZ_ONLY
    return FiberMatchStatus.NO_FIBER_FOUND


def _match_span(span: ProcessedSpanData, poles_by_label: Dict[str, Pole],
                kmz_data: List[KmzFiberData], radius_m: float) -> ProcessedSpanData:
    from_pole = poles_by_label.get(span.from_pole_label)
    to_pole = poles_by_label.get(span.to_pole_label)
    if not (from_pole and from_pole.coordinates and to_pole and to_pole.coordinates):
        span.status = FiberMatchStatus.NO_POLE_COORDS
        return span

    mid = midpoint(from_pole.coordinates, to_pole.coordinates)
    closest, best = None, float("inf")
    for kmz in kmz_data:
        if kmz.coordinates is None:
            continue
        dist = haversine_m(mid, kmz.coordinates)
        if dist < best:
            closest, best = kmz, dist

    if closest is None or best >= radius_m:
        span.status = FiberMatchStatus.NO_KMZ_NEARBY
        return span

    span.kmz_fiber_size = get_capafo_value(closest) or "Unknown"
    span.kmz_fiber_count = extract_fiber_size(span.kmz_fiber_size) or closest.fiber_count
    span.kmz_distance_m = best
    span.status = classify_fiber_counts(span.proposed_fiber_count, span.remedy_fiber_count,
                                        span.kmz_fiber_count)
    return span


def process_fiber_comparison_data(data: Any, kmz_data: Optional[List[KmzFiberData]],
                                  poles: List[Pole],
                                  settings: Optional[QCSettings] = None) -> List[ProcessedSpanData]:
    """Compare Gigapower span fiber counts in *data* with the KMZ map."""
    settings = settings or QCSettings()
    if not data:
        log.warning("fiber comparison: no JSON data supplied")
        return []

    spans = extract_span_fiber_data(data)
    log.info("fiber comparison: %d spans with Gigapower fiber", len(spans))
    if not spans or not kmz_data:
        return spans                      # status stays NO_KMZ_DATA_LOADED

    poles_by_label: Dict[str, Pole] = {}
    for pole in poles:
        for ident in (pole.structure_id, pole.label):
            if ident:
                poles_by_label.setdefault(ident, pole)

    rows = [_match_span(span, poles_by_label, kmz_data, settings.span_kmz_radius_m) for span in spans]
    log.info("fiber comparison status counts: %s", dict(Counter(r.status.value for r in rows)))
    return rows


def fiber_comparison_frame(rows: List[ProcessedSpanData]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "From Pole": r.from_pole_label,
                "To Pole": r.to_pole_label,
                "Proposed Fiber": r.proposed_fiber_size,
                "Proposed Count": r.proposed_fiber_count,
                "Remedy Fiber": r.remedy_fiber_size,
                "Remedy Count": r.remedy_fiber_count,
                "KMZ Fiber": r.kmz_fiber_size,
                "KMZ Count": r.kmz_fiber_count,
                "KMZ Distance (m)": round(r.kmz_distance_m, 1) if r.kmz_distance_m is not None else None,
                "Status": r.status.value,
            }
            for r in rows
        ],
        columns=["From Pole", "To Pole", "Proposed Fiber", "Proposed Count", "Remedy Fiber",
                 "Remedy Count", "KMZ Fiber", "KMZ Count", "KMZ Distance (m)", "Status"],
    )
