"""qc_checks.py – rule battery run against every pole.

Each ``check_*`` function is independent and returns a
:class:`~spidaqc.models.QCCheckResult`; none of them raise for missing data,
they fall back to WARNING or NOT_CHECKED instead.  :func:`run_qc_checks`
fills a :class:`~spidaqc.models.QCResults` and rolls the verdicts up.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

from .config import QCSettings
from .fiber import capafo_count, extract_fiber_size, find_fiber_wires, get_capafo_value, is_gigapower_data
from .models import (
    EXISTING,
    PROPOSED,
    REMEDY,
    KmzFiberData,
    ParsedData,
    Pole,
    ProjectInfo,
    QCCheckResult,
    QCResults,
    QCStatus,
    ValidationSummary,
)

log = logging.getLogger(__name__)

DESIGN_LAYERS = (PROPOSED, REMEDY)
HEIGHT_MATCH_TOLERANCE = 0.1


def _result(message: str) -> QCCheckResult:
    return QCCheckResult(status=QCStatus.NOT_CHECKED, message=message)


def _design_layers(pole: Pole):
    for name in DESIGN_LAYERS:
        layer = pole.get_layer(name)
        if layer is not None:
            yield name, layer


# ---------------------------------------------------------------------------
# individual rules
# ---------------------------------------------------------------------------

def check_owners(pole: Pole) -> QCCheckResult:
    """Wires must share an owner with the attachments they hang on."""
    result = _result("Owner consistency check not performed")
    inconsistencies = 0

    for layer_name, layer in _design_layers(pole):
        owners = {a.id: a.owner.id for a in layer.attachments if a.id}
        for wire in layer.wires:
            for att_id in wire.associated_attachments:
                att_owner = owners.get(att_id)
                if att_owner and att_owner != wire.owner.id:
                    inconsistencies += 1
                    result.details.append(
                        f"In {layer_name} layer: Wire owned by {wire.owner.id} "
                        f"is connected to attachment owned by {att_owner}"
                    )

    if inconsistencies:
        result.status = QCStatus.FAIL
        result.message = (f"Found {inconsistencies} owner inconsistencies between wires "
                          f"and their connected attachments")
    else:
        result.status = QCStatus.PASS
        result.message = "All wire and attachment owners are consistent"
    return result


def check_anchors(pole: Pole, settings: Optional[QCSettings] = None) -> QCCheckResult:
    """PNM guys need a PNM 12" anchor; guy size is reported, enforced only on request."""
    settings = settings or QCSettings()
    result = _result("Anchor and guy wire check not performed")
    issues = 0

    for layer_name, layer in _design_layers(pole):
        anchors = [a for a in layer.attachments if a.attachment_type == "ANCHOR"]
        guys = [a for a in layer.attachments if a.attachment_type == "GUY" and "PNM" in a.owner.id]
        has_pnm_anchor = any(
            "PNM" in a.owner.id and ("12" in a.description or "12" in (a.size or ""))
            for a in anchors
        )
        for guy in guys:
            if not has_pnm_anchor:
                issues += 1
                result.details.append(f'In {layer_name} layer: PNM guy wire does not have a matching 12" anchor')

            texts = (guy.size or "", guy.description, guy.client_item_alias or "")
            if not any(size in text for size in settings.guy_sizes for text in texts):
                result.details.append(
                    f"In {layer_name} layer: PNM guy wire size is not one of {', '.join(settings.guy_sizes)}"
                )
                if settings.enforce_guy_size:
                    issues += 1

    if issues:
        result.status = QCStatus.FAIL
        result.message = f"Found {issues} anchor/guy wire issues"
    else:
        result.status = QCStatus.PASS
        result.message = "All anchor and guy wire specs are valid"
    return result


def check_layer_comparison(pole: Pole) -> QCCheckResult:
    """Owner / usage group changes between EXISTING and the design layers."""
    result = _result("Layer comparison check not performed")
    existing = pole.get_layer(EXISTING)
    if existing is None:
        result.message = "No EXISTING layer found for comparison"
        return result

    others = list(_design_layers(pole))
    if not others:
        result.message = "No PROPOSED or REMEDY layer found for comparison"
        return result

    changes = 0
    for layer_name, other in others:
        for old in existing.attachments:
            new = next((
                a for a in other.attachments
                if (a.id and a.id == old.id)
                or (a.external_id and a.external_id == old.external_id)
                or (abs(a.height.value - old.height.value) < HEIGHT_MATCH_TOLERANCE
                    and a.attachment_type == old.attachment_type)
            ), None)
            if new is not None and new.owner.id != old.owner.id:
                changes += 1
                result.details.append(
                    f'Attachment owner changed from "{old.owner.id}" in EXISTING to '
                    f'"{new.owner.id}" in {layer_name} at height {old.height_in_feet}'
                )

        for old in existing.wires:
            new = next((
                w for w in other.wires
                if (w.id and w.id == old.id)
                or (w.external_id and w.external_id == old.external_id)
                or (old.attachment_height and w.attachment_height
                    and abs(w.attachment_height.value - old.attachment_height.value) < HEIGHT_MATCH_TOLERANCE
                    and w.type == old.type)
            ), None)
            if new is None:
                continue
            kind = old.type or "unknown type"
            if new.owner.id != old.owner.id:
                changes += 1
                result.details.append(
                    f'Wire owner changed from "{old.owner.id}" in EXISTING to '
                    f'"{new.owner.id}" in {layer_name} ({kind})'
                )
            if old.usage_group and new.usage_group and old.usage_group != new.usage_group:
                changes += 1
                result.details.append(
                    f'Wire usage group changed from "{old.usage_group}" in EXISTING to '
                    f'"{new.usage_group}" in {layer_name} ({kind})'
                )

    if changes:
        # changes may well be intentional
        result.status = QCStatus.WARNING
        result.message = f"Found {changes} owner or usage group changes between layers"
    else:
        result.status = QCStatus.PASS
        result.message = "No owner or usage group changes detected between layers"
    return result


def check_pole_stress(pole: Pole, settings: Optional[QCSettings] = None) -> QCCheckResult:
    settings = settings or QCSettings()
    result = _result("Pole stress comparison not performed")
    existing, remedy = pole.get_layer(EXISTING), pole.get_layer(REMEDY)
    if existing is None or remedy is None:
        result.message = "Missing EXISTING or REMEDY layer for stress comparison"
        return result

    before = existing.analysis_results.max_stress_ratio
    after = remedy.analysis_results.max_stress_ratio
    if before is None or after is None:
        result.message = "Stress ratio data not available for comparison"
        return result

    if before == 0:
        # 0 → anything is reported as a flat 100 %
        change = 100.0 if after > 0 else 0.0
    else:
        change = (after - before) / before * 100

    if abs(change) > settings.stress_change_pct:
        result.status = QCStatus.WARNING
        result.message = f"Pole stress changed by {change:.1f}% between EXISTING and REMEDY"
        result.details = [
            f"EXISTING stress ratio: {before:.2f}",
            f"REMEDY stress ratio: {after:.2f}",
            f"Change: {'+' if change > 0 else ''}{change:.1f}%",
        ]
    else:
        result.status = QCStatus.PASS
        result.message = f"Pole stress change is within acceptable limits ({abs(change):.1f}%)"
    return result


def check_station_name(pole: Pole) -> QCCheckResult:
    result = _result("Station name check not performed")
    if re.search(r"[a-z]", pole.structure_id):
        result.status = QCStatus.FAIL
        result.message = "Station name contains lowercase letters"
        result.details.append(f'Station name "{pole.structure_id}" should use uppercase letters only')
    else:
        result.status = QCStatus.PASS
        result.message = "Station name format is correct"
    return result


def check_load_cases(pole: Pole, project_info: ProjectInfo,
                     settings: Optional[QCSettings] = None) -> QCCheckResult:
    settings = settings or QCSettings()
    result = _result("Load case check not performed")
    cases = project_info.default_load_cases
    if not cases:
        result.status = QCStatus.WARNING
        result.message = "No load cases defined in project settings"
        return result

    missing = [req for req in settings.required_load_cases if not any(req in c for c in cases)]
    if missing:
        result.status = QCStatus.FAIL
        result.message = "Missing required load cases"
        result.details = [f'Required load case "{m}" is not defined' for m in missing]
    else:
        result.status = QCStatus.PASS
        result.message = "All required load cases are defined"
        result.details.append(f"Found all required load cases: {', '.join(settings.required_load_cases)}")
    return result


def check_project_settings(project_info: ProjectInfo) -> QCCheckResult:
    result = _result("Project settings check not performed")
    missing = [
        label for label, value in (
            ("Engineer", project_info.engineer),
            ("Comments", project_info.comments),
            ("General Location", project_info.general_location),
        )
        if not value
    ]
    if not project_info.address:
        missing.append("Address")

    if missing:
        result.status = QCStatus.WARNING
        result.message = "Incomplete project settings"
        result.details = [f"Missing or empty project setting: {m}" for m in missing]
    else:
        result.status = QCStatus.PASS
        result.message = "Project settings are complete"
    return result


def check_messenger_size(pole: Pole, settings: Optional[QCSettings] = None) -> QCCheckResult:
    settings = settings or QCSettings()
    result = _result("Messenger size check not performed")
    invalid = 0

    for layer_name, layer in _design_layers(pole):
        for wire in layer.wires:
            if wire.usage_group != "COMMUNICATION_BUNDLE":
                continue
            size = wire.client_item.messenger_size
            if not size:
                invalid += 1
                result.details.append(
                    f"Communication bundle in {layer_name} layer is missing messenger size information"
                )
            elif not any(allowed in size for allowed in settings.messenger_sizes):
                invalid += 1
                result.details.append(
                    f'Communication bundle in {layer_name} layer has non-standard messenger size: "{size}"'
                )

    if invalid:
        result.status = QCStatus.FAIL
        result.message = f"Found {invalid} communication bundles with invalid messenger sizes"
    else:
        result.status = QCStatus.PASS
        result.message = "All communication bundle messenger sizes are valid"
    return result


def _ids_related(kmz_id: str, pole: Pole) -> bool:
    return any(ident == kmz_id or kmz_id in ident or ident in kmz_id for ident in pole.identifiers())


def _near_pole(kmz: KmzFiberData, pole: Pole, max_distance_sq: float) -> bool:
    if pole.coordinates is None or kmz.coordinates is None:
        return False
    lat_diff = pole.coordinates.latitude - kmz.coordinates.latitude
    lon_diff = pole.coordinates.longitude - kmz.coordinates.longitude
    return lat_diff * lat_diff + lon_diff * lon_diff <= max_distance_sq


def _sum_label(counts: List[int], total: int) -> str:
    return f"{' + '.join(map(str, counts))} = {total}" if len(counts) > 1 else str(total)


def check_fiber_size(pole: Pole, kmz_data: Optional[List[KmzFiberData]] = None,
                     settings: Optional[QCSettings] = None) -> QCCheckResult:
    """Gigapower fiber count on the pole vs. the KMZ ``cb_capafo`` value."""
    settings = settings or QCSettings()
    result = _result("Fiber size/count check not performed")
    if not kmz_data:
        return result

    relevant = [
        k for k in kmz_data
        if (k.pole_id and _ids_related(k.pole_id, pole))
        or _near_pole(k, pole, settings.pole_kmz_max_distance_sq)
    ]
    if not relevant:
        result.status = QCStatus.WARNING
        result.message = "No fiber data found in KMZ near this pole"
        return result

    gigapower = [k for k in relevant if is_gigapower_data(k)]
    if not gigapower:
        result.status = QCStatus.PASS
        result.message = "No Gigapower fiber data found in KMZ for this pole"
        return result

    capafo = get_capafo_value(gigapower[0])
    if not capafo:
        result.status = QCStatus.WARNING
        result.message = "Gigapower fiber data found but no cb_capafo value available"
        return result
    kmz_count = capafo_count(capafo)

    issues = matches = 0
    for layer_name in DESIGN_LAYERS:
        if pole.get_layer(layer_name) is None:
            continue
        wires = find_fiber_wires(pole, layer_name)
        if not wires:
            result.details.append(f"No fiber cables found in {layer_name} layer")
            continue
        counts = [c for c in (extract_fiber_size(w) for w in wires) if c > 0]
        total = sum(counts)
        if total != kmz_count:
            issues += 1
            result.details.append(
                f"Fiber count mismatch in {layer_name}: SPIDAcalc has {_sum_label(counts, total)} "
                f"fibers, but KMZ has {kmz_count} fibers (cb_capafo value)"
            )
        else:
            matches += 1
            result.details.append(
                f"Fiber count matches in {layer_name}: {_sum_label(counts, total)} fibers "
                f"equals KMZ cb_capafo value of {kmz_count}"
            )

    if issues:
        result.status = QCStatus.FAIL
        result.message = f"Found {issues} fiber count inconsistencies"
    elif matches:
        result.status = QCStatus.PASS
        result.message = "Fiber count matches KMZ data"
    else:
        result.status = QCStatus.WARNING
        result.message = "Fiber check completed with warnings"
    return result


def _order_inversions(proposed: List[str], remedy: List[str]) -> List[tuple]:
    """Pairs of shared ids whose relative order differs between the two lists."""
    shared = set(proposed) & set(remedy)
    p_seq = [i for i in proposed if i in shared]
    r_pos = {wep_id: n for n, wep_id in enumerate(i for i in remedy if i in shared)}
    inversions = []
    for i, first in enumerate(p_seq):
        for second in p_seq[i + 1:]:
            if r_pos[first] > r_pos[second]:
                inversions.append((first, second))
    return inversions


def check_wire_end_point_order(pole: Pole) -> QCCheckResult:
    """REMEDY must keep PROPOSED's relative order for the WEPs they share."""
    result = _result("Wire end point order check not performed")
    proposed, remedy = pole.get_layer(PROPOSED), pole.get_layer(REMEDY)
    if proposed is None or remedy is None:
        result.message = "Missing PROPOSED or REMEDY layer for wire end point order check"
        return result

    p_ids = [w.id for w in proposed.wire_end_points if w.id]
    r_ids = [w.id for w in remedy.wire_end_points if w.id]
    if not set(p_ids) & set(r_ids):
        result.message = "No common wire end points between PROPOSED and REMEDY"
        return result

    inversions = _order_inversions(p_ids, r_ids)
    if inversions:
        result.status = QCStatus.FAIL
        result.message = "Wire end point order differs between PROPOSED and REMEDY"
        result.details = [
            f"PROPOSED order: {', '.join(p_ids)}",
            f"REMEDY order: {', '.join(r_ids)}",
        ] + [f"{a} comes before {b} in PROPOSED but after it in REMEDY" for a, b in inversions]
    else:
        result.status = QCStatus.PASS
        result.message = "Wire end point order matches between PROPOSED and REMEDY"
    return result


# ---------------------------------------------------------------------------
# aggregation
# ---------------------------------------------------------------------------

def overall_status(statuses: Iterable[QCStatus]) -> QCStatus:
    statuses = list(statuses)
    for status in (QCStatus.FAIL, QCStatus.WARNING, QCStatus.PASS):
        if status in statuses:
            return status
    return QCStatus.NOT_CHECKED


def summarize_results(results: QCResults) -> QCResults:
    """Fill the counters and overall status of *results* from its rule slots."""
    statuses = [check.status for check in results.checks().values()]
    results.pass_count = statuses.count(QCStatus.PASS)
    results.fail_count = statuses.count(QCStatus.FAIL)
    results.warning_count = statuses.count(QCStatus.WARNING)
    results.overall_status = overall_status(statuses)
    return results


def run_qc_checks(pole: Pole, project_info: ProjectInfo,
                  kmz_data: Optional[List[KmzFiberData]] = None,
                  settings: Optional[QCSettings] = None) -> QCResults:
    settings = settings or QCSettings()
    results = QCResults(
        owner_check=check_owners(pole),
        anchor_check=check_anchors(pole, settings),
        layer_comparison_check=check_layer_comparison(pole),
        pole_stress_check=check_pole_stress(pole, settings),
        station_name_check=check_station_name(pole),
        load_case_check=check_load_cases(pole, project_info, settings),
        project_settings_check=check_project_settings(project_info),
        messenger_size_check=check_messenger_size(pole, settings),
        fiber_size_check=check_fiber_size(pole, kmz_data, settings),
        wire_end_point_order_check=check_wire_end_point_order(pole),
    )
    return summarize_results(results)


def run_all_qc_checks(parsed: ParsedData, kmz_data: Optional[List[KmzFiberData]] = None,
                      settings: Optional[QCSettings] = None) -> ValidationSummary:
    """Run every rule on every pole, attach the results, and total them up.

    A pole counts as valid when its overall status is not FAIL.
    """
    summary = ValidationSummary(total_poles=len(parsed.poles))
    for pole in parsed.poles:
        pole.qc_results = run_qc_checks(pole, parsed.project_info, kmz_data, settings)
        ok = pole.qc_results.overall_status is not QCStatus.FAIL
        summary.pole_results[pole.structure_id] = ok
        summary.valid_poles += ok
        summary.invalid_poles += not ok
        summary.pass_count += pole.qc_results.pass_count
        summary.fail_count += pole.qc_results.fail_count
        summary.warning_count += pole.qc_results.warning_count
    log.info("QC complete: %d/%d poles valid", summary.valid_poles, summary.total_poles)
    return summary
