"""report.py – tabular views of QC results and the multi-sheet Excel export."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pandas as pd

from .exceptions import SpidaQCError
from .models import KmzPoleMatch, Pole, QC_CHECK_NAMES


def _check_title(name: str) -> str:
    # owner_check -> Owner
    return name[: -len("_check")].replace("_", " ").title() if name.endswith("_check") else name


def qc_results_frame(poles: List[Pole]) -> pd.DataFrame:
    """One row per pole: overall status, counts, then one column per rule."""
    rows = []
    for pole in poles:
        qc = pole.qc_results
        row = {
            "Pole": pole.structure_id,
            "Label": pole.label,
            "Overall": qc.overall_status.value if qc else None,
            "Pass": qc.pass_count if qc else 0,
            "Fail": qc.fail_count if qc else 0,
            "Warning": qc.warning_count if qc else 0,
        }
        if qc:
            for name, check in qc.checks().items():
                row[_check_title(name)] = check.status.value
        rows.append(row)
    columns = ["Pole", "Label", "Overall", "Pass", "Fail", "Warning"] + [_check_title(n) for n in QC_CHECK_NAMES]
    return pd.DataFrame(rows, columns=columns)


def qc_details_frame(poles: List[Pole]) -> pd.DataFrame:
    """Every non-passing verdict with its message and detail lines."""
    rows = []
    for pole in poles:
        if pole.qc_results is None:
            continue
        for name, check in pole.qc_results.checks().items():
            if check.status.value in ("PASS", "NOT_CHECKED"):
                continue
            for detail in check.details or [None]:
                rows.append({
                    "Pole": pole.structure_id,
                    "Check": _check_title(name),
                    "Status": check.status.value,
                    "Message": check.message,
                    "Detail": detail,
                })
    return pd.DataFrame(rows, columns=["Pole", "Check", "Status", "Message", "Detail"])


def kmz_matches_frame(matches: List[KmzPoleMatch]) -> pd.DataFrame:
    rows = []
    for m in matches:
        coords = m.kmz_data.coordinates
        rows.append({
            "Pole": m.pole.structure_id,
            "KMZ Pole ID": m.kmz_data.pole_id,
            "KMZ Coord": f"{coords.latitude:.6f}, {coords.longitude:.6f}" if coords else None,
            "Distance": round(m.distance, 6),
            "Match Type": m.match_type,
            "cb_capafo": m.cb_capafo,
            "Proposed Fiber": " + ".join(map(str, m.proposed_fiber_sizes)) or None,
            "Proposed Sum": sum(m.proposed_fiber_sizes),
            "Remedy Fiber": " + ".join(map(str, m.remedy_fiber_sizes)) or None,
            "Remedy Sum": sum(m.remedy_fiber_sizes),
            "Match": m.has_match,
        })
    return pd.DataFrame(rows, columns=["Pole", "KMZ Pole ID", "KMZ Coord", "Distance", "Match Type",
                                       "cb_capafo", "Proposed Fiber", "Proposed Sum", "Remedy Fiber",
                                       "Remedy Sum", "Match"])


def export_xlsx(path: Path | str, sheets: Dict[str, pd.DataFrame]) -> Path:
    """Write each frame to its own sheet (Excel caps sheet names at 31 chars)."""
    path = Path(path)
    try:
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for name, df in sheets.items():
                df.to_excel(writer, sheet_name=name[:31], index=False)
    except OSError as e:
        raise SpidaQCError(f"Could not write {path}: {e}")
    return path
