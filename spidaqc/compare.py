"""compare.py – span engine that diffs the PROPOSED and REMEDY designs.

Spans are not stored in SPIDA exports; they are inferred from pairs of wire
end points on two poles that point back at each other (opposite direction,
same length).  Spans found in each layer are then matched by pole pair and
the wires hanging on each end are diffed.

``span_changes_frame`` flattens the result into a Pandas DataFrame with:
    span, span status, pole, WEP, change, wire id, owner, size, details.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import pandas as pd

from .config import QCSettings
from .geo import are_angles_opposite, are_distances_close
from .models import (
    PROPOSED,
    REMEDY,
    ChangeType,
    DesignComparisonResults,
    IdentifiedSpan,
    ParsedData,
    Pole,
    PoleWire,
    SpanComparisonResult,
    SpanStatus,
    WireChange,
    WireEndPoint,
    span_key,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _usable_wep(wep: WireEndPoint) -> bool:
    """A WEP needs an id, a direction and a non-zero distance to be matched."""
    return bool(wep.id) and wep.direction is not None and bool(wep.distance and wep.distance.value)


def _is_reciprocal(wep_a: WireEndPoint, wep_b: WireEndPoint, settings: QCSettings) -> bool:
    return (
        are_angles_opposite(wep_a.direction, wep_b.direction, settings.angle_tolerance_deg)
        and are_distances_close(wep_a.distance, wep_b.distance, settings.distance_tolerance_pct)
    )


def _make_span(pole_a: str, wep_a: str, pole_b: str, wep_b: str) -> IdentifiedSpan:
    # poleA is always the lexically smaller id so both layers agree on orientation
    if pole_b < pole_a:
        pole_a, wep_a, pole_b, wep_b = pole_b, wep_b, pole_a, wep_a
    return IdentifiedSpan(
        span_id=f"{pole_a}_{wep_a}-{pole_b}_{wep_b}",
        pole_a_id=pole_a,
        pole_a_wep_id=wep_a,
        pole_b_id=pole_b,
        pole_b_wep_id=wep_b,
    )


def _wires_for_wep(pole: Optional[Pole], layer_name: str, wep_id: Optional[str]) -> List[PoleWire]:
    """Resolve WEP → wire ids → wire objects within one layer."""
    if pole is None or not wep_id:
        return []
    layer = pole.get_layer(layer_name)
    if layer is None:
        return []
    wep = layer.find_wire_end_point(wep_id)
    if wep is None:
        return []
    by_id = layer.wires_by_id()
    return [by_id[w] for w in wep.wires if w in by_id]


# ---------------------------------------------------------------------------
# span discovery
# ---------------------------------------------------------------------------

def identify_spans_in_layer(poles: List[Pole], layer_name: str,
                            settings: Optional[QCSettings] = None) -> List[IdentifiedSpan]:
    """Spans in one layer, one per unordered pole pair."""
    settings = settings or QCSettings()
    spans: List[IdentifiedSpan] = []
    processed: set[str] = set()

    weps_by_pole: Dict[str, List[WireEndPoint]] = {}
    for pole in poles:
        layer = pole.get_layer(layer_name)
        if pole.structure_id and layer is not None and layer.wire_end_points:
            weps_by_pole[pole.structure_id] = [w for w in layer.wire_end_points if _usable_wep(w)]

    for pole_a, weps_a in weps_by_pole.items():
        for wep_a in weps_a:
            for pole_b, weps_b in weps_by_pole.items():
                if pole_b == pole_a:
                    continue
                key = span_key(pole_a, pole_b)
                if key in processed:
                    continue
                wep_b = next((w for w in weps_b if _is_reciprocal(wep_a, w, settings)), None)
                if wep_b is not None:
                    spans.append(_make_span(pole_a, wep_a.id, pole_b, wep_b.id))
                    processed.add(key)

    log.info("identified %d spans in layer '%s'", len(spans), layer_name)
    return spans


def match_spans_between_layers(proposed_spans: List[IdentifiedSpan],
                               remedy_spans: List[IdentifiedSpan]) -> List[SpanComparisonResult]:
    """Partition spans into MATCHED / REMOVED_IN_REMEDY / ADDED_IN_REMEDY."""
    remedy_by_key: Dict[str, IdentifiedSpan] = {}
    for span in remedy_spans:
        remedy_by_key.setdefault(span.key, span)

    results: List[SpanComparisonResult] = []
    for prop in proposed_spans:
        rem = remedy_by_key.pop(prop.key, None)
        results.append(SpanComparisonResult(
            pole_a_id=prop.pole_a_id,
            pole_b_id=prop.pole_b_id,
            span_status=SpanStatus.MATCHED if rem else SpanStatus.REMOVED_IN_REMEDY,
            proposed_span=prop,
            remedy_span=rem,
        ))

    for rem in remedy_by_key.values():
        results.append(SpanComparisonResult(
            pole_a_id=rem.pole_a_id,
            pole_b_id=rem.pole_b_id,
            span_status=SpanStatus.ADDED_IN_REMEDY,
            remedy_span=rem,
        ))
    return results


# ---------------------------------------------------------------------------
# wire diff
# ---------------------------------------------------------------------------

def _diff_wire_lists(proposed: List[PoleWire], remedy: List[PoleWire], pole_id: str,
                     wep_id: Optional[str], tolerance: float) -> List[WireChange]:
    if not wep_id:
        return []

    remedy_by_key = {w.key: w for w in remedy if w.key}
    changes: List[WireChange] = []
    for prop_wire in proposed:
        key = prop_wire.key
        if not key:
            continue
        rem_wire = remedy_by_key.pop(key, None)
        if rem_wire is None:
            changes.append(WireChange(ChangeType.REMOVED, pole_id, wep_id, prop_wire))
            continue

        details = []
        before = prop_wire.attachment_height.value if prop_wire.attachment_height else None
        after = rem_wire.attachment_height.value if rem_wire.attachment_height else None
        if before is not None and after is not None and abs(before - after) > tolerance:
            details.append(f"Height changed from {before:.2f} to {after:.2f}")
        if details:
            changes.append(WireChange(ChangeType.MODIFIED, pole_id, wep_id, rem_wire,
                                      previous_wire=prop_wire, change_details=details))

    for rem_wire in remedy_by_key.values():
        changes.append(WireChange(ChangeType.ADDED, pole_id, wep_id, rem_wire))
    return changes


def compare_wires_for_span(result: SpanComparisonResult,
                           proposed_poles: Dict[str, Pole],
                           remedy_poles: Dict[str, Pole],
                           settings: Optional[QCSettings] = None) -> SpanComparisonResult:
    """Fill ``changes_at_pole_a`` / ``changes_at_pole_b`` of *result* in place."""
    settings = settings or QCSettings()
    prop, rem = result.proposed_span, result.remedy_span
    a, b = result.pole_a_id, result.pole_b_id

    wires_a_prop = _wires_for_wep(proposed_poles.get(a), PROPOSED, prop.pole_a_wep_id if prop else None)
    wires_b_prop = _wires_for_wep(proposed_poles.get(b), PROPOSED, prop.pole_b_wep_id if prop else None)
    wires_a_rem = _wires_for_wep(remedy_poles.get(a), REMEDY, rem.pole_a_wep_id if rem else None)
    wires_b_rem = _wires_for_wep(remedy_poles.get(b), REMEDY, rem.pole_b_wep_id if rem else None)

    if result.span_status is SpanStatus.MATCHED:
        tol = settings.float_tolerance
        result.changes_at_pole_a = _diff_wire_lists(wires_a_prop, wires_a_rem, a, rem.pole_a_wep_id, tol)
        result.changes_at_pole_b = _diff_wire_lists(wires_b_prop, wires_b_rem, b, rem.pole_b_wep_id, tol)
    elif result.span_status is SpanStatus.REMOVED_IN_REMEDY:
        result.changes_at_pole_a = [WireChange(ChangeType.REMOVED, a, prop.pole_a_wep_id, w) for w in wires_a_prop]
        result.changes_at_pole_b = [WireChange(ChangeType.REMOVED, b, prop.pole_b_wep_id, w) for w in wires_b_prop]
    elif result.span_status is SpanStatus.ADDED_IN_REMEDY:
        result.changes_at_pole_a = [WireChange(ChangeType.ADDED, a, rem.pole_a_wep_id, w) for w in wires_a_rem]
        result.changes_at_pole_b = [WireChange(ChangeType.ADDED, b, rem.pole_b_wep_id, w) for w in wires_b_rem]
    return result


# ---------------------------------------------------------------------------
# main compare
# ---------------------------------------------------------------------------

def layer_data(parsed: ParsedData, layer_name: str) -> ParsedData:
    """Subset of *parsed* holding only poles that carry *layer_name*."""
    poles = [
        Pole(
            structure_id=p.structure_id,
            alias=p.alias,
            label=p.label,
            coordinates=p.coordinates,
            layers={layer_name: p.get_layer(layer_name)},
        )
        for p in parsed.poles
        if p.get_layer(layer_name) is not None
    ]
    return ParsedData(poles=poles, project_info=parsed.project_info, shape=parsed.shape)


def compare_designs(proposed_data: ParsedData, remedy_data: ParsedData,
                    settings: Optional[QCSettings] = None) -> DesignComparisonResults:
    """Identify, match and diff spans between the PROPOSED and REMEDY designs."""
    settings = settings or QCSettings()
    proposed_by_id = {p.structure_id: p for p in proposed_data.poles}
    remedy_by_id = {p.structure_id: p for p in remedy_data.poles}

    proposed_spans = identify_spans_in_layer(proposed_data.poles, PROPOSED, settings)
    remedy_spans = identify_spans_in_layer(remedy_data.poles, REMEDY, settings)

    results = match_spans_between_layers(proposed_spans, remedy_spans)
    for result in results:
        compare_wires_for_span(result, proposed_by_id, remedy_by_id, settings)

    return DesignComparisonResults(
        comparison_description="Proposed vs. Remedy Span Comparison",
        span_results=results,
    )


def span_changes_frame(results: DesignComparisonResults) -> pd.DataFrame:
    """One row per wire change; spans without changes get a single blank row."""
    rows: List[dict] = []
    for span in results.span_results:
        base = {
            "Span": f"{span.pole_a_id} - {span.pole_b_id}",
            "Span Status": span.span_status.value,
        }
        changes = span.changes_at_pole_a + span.changes_at_pole_b
        if not changes:
            rows.append({**base, "Pole": None, "WEP": None, "Change": None,
                         "Wire": None, "Owner": None, "Size": None, "Details": None})
            continue
        for change in changes:
            wire = change.wire
            rows.append({
                **base,
                "Pole": change.pole_id,
                "WEP": change.wire_end_point_id,
                "Change": change.type.value,
                "Wire": wire.key,
                "Owner": wire.owner.id,
                "Size": wire.client_item.size or wire.size,
                "Details": "; ".join(change.change_details) or None,
            })
    return pd.DataFrame(rows, columns=["Span", "Span Status", "Pole", "WEP", "Change",
                                       "Wire", "Owner", "Size", "Details"])
