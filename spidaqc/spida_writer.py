"""
spida_writer.py – produce the corrected SPIDA JSON for download.

The parsed Pole model is never edited.  User edits are collected in an
:class:`EditOverlay` and patched onto a deep copy of the loaded export,
together with the REMEDY wire end point re-ordering.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import SpidaQCError
from .models import PROPOSED, REMEDY
from .formatting import safe_display_value
from .parsers import _as_dict, _as_list, layer_key

log = logging.getLogger(__name__)

EXPORT_FILENAME = "updated-spidacalc-data.json"

_FIBER_TEXT_RE = re.compile(r"fiber|fbr|gig|\d+\s*ct", re.IGNORECASE)


@dataclass
class FiberSizeChange:
    """New fiber size for the Gigapower wires of one span in one design."""
    from_pole_label: str
    to_pole_label: str
    design_layer: str                       # PROPOSED or REMEDY
    new_fiber_size: str
    wire_ids: List[str] = field(default_factory=list)


@dataclass
class EditOverlay:
    environments: Dict[str, str] = field(default_factory=dict)                   # pole label → value
    wep_environments: Dict[Tuple[str, str], str] = field(default_factory=dict)   # (pole label, WEP id) → value
    fiber_sizes: List[FiberSizeChange] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.environments or self.wep_environments or self.fiber_sizes)


@dataclass
class OrderCorrection:
    location_label: str
    status: str                             # Reordered / Matched / Skipped / Error
    message: str = ""


# ---------------------------------------------------------------------------
# navigation helpers
# ---------------------------------------------------------------------------

def _iter_locations(spida: dict):
    for lead in _as_list(_as_dict(spida).get("leads")):
        if isinstance(lead, dict):
            for loc in _as_list(lead.get("locations")):
                if isinstance(loc, dict):
                    yield loc


def _find_design(location: dict, layer: str) -> Optional[dict]:
    for design in _as_list(location.get("designs")):
        if isinstance(design, dict) and layer_key(design) == layer:
            return design
    return None


def _weps(design: Optional[dict]) -> Optional[list]:
    if design is None:
        return None
    weps = _as_dict(design.get("structure")).get("wireEndPoints")
    return weps if isinstance(weps, list) else None


def _wep_id(wep: Any) -> str:
    return safe_display_value(wep.get("id")) if isinstance(wep, dict) else ""


def _reordered(proposed: list, remedy: list) -> list:
    """REMEDY WEPs in PROPOSED order for shared ids, REMEDY-only ones appended."""
    remedy_by_id = {_wep_id(w): w for w in remedy if _wep_id(w)}
    ordered, used = [], set()
    for wep in proposed:
        wep_id = _wep_id(wep)
        if wep_id in remedy_by_id and wep_id not in used:
            ordered.append(remedy_by_id[wep_id])
            used.add(wep_id)
    ordered.extend(w for w in remedy if _wep_id(w) and _wep_id(w) not in used)
    return ordered


# ---------------------------------------------------------------------------
# wire end point order
# ---------------------------------------------------------------------------

def reorder_wire_end_points_for_location(spida: dict, location_label: str) -> dict:
    """Copy of *spida* with one location's REMEDY WEPs in PROPOSED order.

    Only the first lead is searched.  Anything missing leaves the copy as is.
    """
    data = copy.deepcopy(spida)
    leads = _as_list(_as_dict(data).get("leads"))
    if not leads:
        log.error("no leads found in the JSON data")
        return data

    location = next((loc for loc in _as_list(_as_dict(leads[0]).get("locations"))
                     if isinstance(loc, dict) and loc.get("label") == location_label), None)
    if location is None:
        log.error("location %r not found", location_label)
        return data

    remedy = _find_design(location, REMEDY)
    proposed_weps, remedy_weps = _weps(_find_design(location, PROPOSED)), _weps(remedy)
    if proposed_weps is None or remedy_weps is None:
        log.error("location %r lacks PROPOSED or REMEDY wire end points", location_label)
        return data

    remedy["structure"]["wireEndPoints"] = _reordered(proposed_weps, remedy_weps)
    return data


def correct_wire_end_point_order_for_all_locations(spida: dict) -> Tuple[dict, List[OrderCorrection]]:
    """Re-order REMEDY WEPs everywhere; returns the copy and a per-location report."""
    data = copy.deepcopy(spida)
    summary: List[OrderCorrection] = []

    if not _as_list(_as_dict(data).get("leads")):
        summary.append(OrderCorrection("N/A", "Skipped", "No leads found in the JSON data"))
        return data, summary

    for location in _iter_locations(data):
        label = str(location.get("label") or "Unknown Location")
        try:
            if not location.get("designs"):
                summary.append(OrderCorrection(label, "Skipped", "No designs found"))
                continue
            proposed, remedy = _find_design(location, PROPOSED), _find_design(location, REMEDY)
            if proposed is None or remedy is None:
                summary.append(OrderCorrection(label, "Skipped", '"Proposed" or "Remedy" design not found'))
                continue
            proposed_weps, remedy_weps = _weps(proposed), _weps(remedy)
            if proposed_weps is None or remedy_weps is None:
                summary.append(OrderCorrection(
                    label, "Skipped", "Missing or invalid wireEndPoints array in Proposed or Remedy design"))
                continue

            new_weps = _reordered(proposed_weps, remedy_weps)
            before = [_wep_id(w) for w in remedy_weps if _wep_id(w)]
            after = [_wep_id(w) for w in new_weps]
            if before != after:
                remedy["structure"]["wireEndPoints"] = new_weps
                summary.append(OrderCorrection(label, "Reordered", "WireEndPoints order corrected"))
            else:
                summary.append(OrderCorrection(label, "Matched", "WireEndPoints order already matched"))
        except (AttributeError, TypeError) as e:
            log.error("could not process wire end points for %s: %s", label, e)
            summary.append(OrderCorrection(label, "Error", f"Processing error: {e}"))

    return data, summary


# ---------------------------------------------------------------------------
# user edits
# ---------------------------------------------------------------------------

def apply_environment_edits(spida: dict, environments: Dict[str, str],
                            wep_environments: Dict[Tuple[str, str], str]) -> int:
    """Write environment values into every design of the edited poles; returns edits made."""
    edits = 0
    for location in _iter_locations(spida):
        label = safe_display_value(location.get("label"))
        for design in _as_list(location.get("designs")):
            structure = _as_dict(design).get("structure")
            if not isinstance(structure, dict):
                continue
            if label in environments:
                pole = structure.setdefault("pole", {})
                if isinstance(pole, dict):
                    pole["environment"] = environments[label]
                    edits += 1
            for wep in _as_list(structure.get("wireEndPoints")):
                if not isinstance(wep, dict):
                    continue
                value = wep_environments.get((label, _wep_id(wep)))
                if value is not None:
                    wep["environment"] = value
                    edits += 1
    return edits


def _patch_wire_size(wire: dict, new_size: str) -> None:
    item = wire.get("clientItem")
    if isinstance(item, dict):
        item["size"] = new_size
    else:
        wire["clientItem"] = {"size": new_size}
    wire["size"] = new_size
    description = wire.get("description")
    if isinstance(description, str) and _FIBER_TEXT_RE.search(description):
        wire["description"] = new_size


def apply_fiber_size_edits(spida: dict, changes: List[FiberSizeChange]) -> int:
    """Write edited fiber sizes into the referenced wires; returns wires touched."""
    by_label = {safe_display_value(loc.get("label")): loc for loc in _iter_locations(spida)}
    touched = 0
    for change in changes:
        location = by_label.get(change.from_pole_label)
        design = _find_design(location, change.design_layer.upper()) if location else None
        if design is None:
            log.warning("no %s design for pole %s; fiber edit skipped",
                        change.design_layer, change.from_pole_label)
            continue
        wanted = set(change.wire_ids)
        for wire in _as_list(_as_dict(design.get("structure")).get("wires")):
            if isinstance(wire, dict) and safe_display_value(wire.get("id")) in wanted:
                _patch_wire_size(wire, change.new_fiber_size)
                touched += 1
    return touched


def build_corrected_export(spida: dict, overlay: Optional[EditOverlay] = None,
                           fix_wep_order: bool = True) -> Tuple[dict, List[OrderCorrection]]:
    """Full corrected copy of *spida*: WEP order, environments, fiber sizes."""
    overlay = overlay or EditOverlay()
    if fix_wep_order:
        data, summary = correct_wire_end_point_order_for_all_locations(spida)
    else:
        data, summary = copy.deepcopy(spida), []

    env_edits = apply_environment_edits(data, overlay.environments, overlay.wep_environments)
    fiber_edits = apply_fiber_size_edits(data, overlay.fiber_sizes)
    log.info("export: %d environment edits, %d fiber wires updated", env_edits, fiber_edits)
    return data, summary


def write_corrected_json(data: Any, directory: Path | str, filename: str = EXPORT_FILENAME) -> Path:
    directory = Path(directory)
    path = directory / filename
    try:
        directory.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise SpidaQCError(f"Could not write {path}: {e}")
    return path
