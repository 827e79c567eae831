"""fiber.py – fiber count extraction and Gigapower/AT&T classification.

A wire's fiber count is never a stored field; it is recovered from whichever
free-text field happens to carry it.  The cascade is an ordered list of
``(name, strategy)`` pairs in :data:`FIBER_COUNT_STRATEGIES`.  Each strategy
takes one string and returns a count or ``None``; the first hit wins.

KMZ descriptions are unwrapped the same way: properties dict, then HTML
table cells, then an embedded JSON object, then ``name: value`` free text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from .formatting import lower_text, safe_display_value
from .models import KmzFiberData, Pole, PoleWire

log = logging.getLogger(__name__)

MIN_FIBER_COUNT = 12          # smaller bare numbers are sizes, not counts

Strategy = Callable[[str], Optional[int]]

# ---------------------------------------------------------------------------
# count strategies
# ---------------------------------------------------------------------------

_CT_RE = re.compile(r"(\d+)\s*ct", re.IGNORECASE)
_FIBER_RE = re.compile(r"(\d+)[\s-]*(fiber|fbr|f\b)", re.IGNORECASE)
_ADSS_RE = re.compile(r"adss[\s-]*(\d+)", re.IGNORECASE)
_COUNT_RE = re.compile(r"(\d+)[\s-]*(count|cable|strand|ct)", re.IGNORECASE)
_COMPACT_RE = re.compile(r"(\d+)(ct|f|fiber|fbr)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"(\d+)")

_FIBER_KEYWORDS = ("gig", "att", "at&t", "fiber", "fbr")


def _sum_ct(text: str) -> Optional[int]:
    """Sum every ``<N>ct`` token: "48ct GIG, 72ct GIG" -> 120."""
    counts = [int(n) for n in _CT_RE.findall(text)]
    return sum(counts) if counts else None


def _first_group(pattern: re.Pattern) -> Strategy:
    def strategy(text: str) -> Optional[int]:
        m = pattern.search(text)
        return int(m.group(1)) if m else None
    return strategy


def _keyword_number(text: str) -> Optional[int]:
    lowered = text.lower()
    if "messenger" in lowered or not any(k in lowered for k in _FIBER_KEYWORDS):
        return None
    m = _NUMBER_RE.search(text)
    if m and int(m.group(1)) >= MIN_FIBER_COUNT:
        return int(m.group(1))
    return None


def _bare_number(text: str) -> Optional[int]:
    # "3/8" and friends are strand sizes
    if "/" in text:
        return None
    m = _NUMBER_RE.search(text)
    if m and int(m.group(1)) >= MIN_FIBER_COUNT:
        return int(m.group(1))
    return None


FIBER_COUNT_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("ct_sum", _sum_ct),
    ("fiber_suffix", _first_group(_FIBER_RE)),
    ("adss_prefix", _first_group(_ADSS_RE)),
    ("count_suffix", _first_group(_COUNT_RE)),
    ("compact", _first_group(_COMPACT_RE)),
    ("keyword_number", _keyword_number),
    ("bare_number", _bare_number),
]


def _candidate_strings(source: Union[PoleWire, str, None]) -> List[str]:
    """Text fields to scan, most reliable first."""
    if source is None:
        return []
    if isinstance(source, str):
        return [source] if source else []
    fields = (
        source.client_item.size,
        source.size,
        source.description,
        source.type,
        source.client_item.type,
    )
    return [s for s in (safe_display_value(f) for f in fields) if s]


def count_from_text(text: str,
                    strategies: Iterable[Tuple[str, Strategy]] = FIBER_COUNT_STRATEGIES) -> int:
    for name, strategy in strategies:
        count = strategy(text)
        if count is not None:
            log.debug("fiber count %d from %r via %s", count, text, name)
            return count
    return 0


def extract_fiber_size(source: Union[PoleWire, str, None]) -> int:
    """Fiber count of a wire (or a raw size string); 0 when nothing matches."""
    for text in _candidate_strings(source):
        count = count_from_text(text)
        if count:
            return count
    return 0


# ---------------------------------------------------------------------------
# wire classification
# ---------------------------------------------------------------------------

_FIBER_TYPE_WORDS = ("fiber", "fbr", "optic")
_SIZE_COUNT_RE = re.compile(r"\d+\s*(ct|fiber)", re.IGNORECASE)


def is_gigapower_wire(wire: PoleWire) -> bool:
    """Owner / id / description / size text mentions AT&T or Gigapower."""
    for text in (wire.owner.id, wire.external_id, wire.description):
        lowered = lower_text(text)
        if "att" in lowered or "gigapower" in lowered:
            return True
    return "gig" in lower_text(wire.size) or "gig" in lower_text(wire.client_item.size)


def _size_looks_fiber(size: str) -> bool:
    lowered = size.lower()
    return (
        "fiber" in lowered
        or "fbr" in lowered
        or "ct" in lowered
        or _SIZE_COUNT_RE.search(size) is not None
    )


def is_fiber_wire(wire: PoleWire) -> bool:
    for text in (wire.type, wire.description, wire.client_item.type):
        lowered = lower_text(text)
        if any(w in lowered for w in _FIBER_TYPE_WORDS):
            return True
    return any(_size_looks_fiber(safe_display_value(s))
               for s in (wire.size, wire.client_item.size) if s)


def is_gigapower_owned(wire: PoleWire) -> bool:
    """Strict owner check used when summing span fiber."""
    return "gigapower" in lower_text(wire.owner.id)


def find_fiber_wires(pole: Pole, layer_name: str) -> List[PoleWire]:
    layer = pole.get_layer(layer_name)
    if layer is None:
        return []
    return [w for w in layer.wires if is_gigapower_wire(w) or is_fiber_wire(w)]


# ---------------------------------------------------------------------------
# KMZ description unwrapping
# ---------------------------------------------------------------------------

def extract_from_html(html: Any, prop_name: str) -> Optional[str]:
    """Value cell following ``<td>prop_name</td>`` in an HTML table."""
    if not isinstance(html, str) or not html:
        return None
    if "<html" not in html and "<table" not in html:
        return None
    pattern = re.compile(
        rf"<td[^>]*>{re.escape(prop_name)}</td>\s*<td[^>]*>(.*?)</td>",
        re.IGNORECASE | re.DOTALL,
    )
    m = pattern.search(html)
    if m and m.group(1).strip():
        return m.group(1).strip()
    return None


def _extract_from_json(text: str, prop_name: str) -> Optional[str]:
    stripped = text.strip()
    if not (stripped.startswith("{") and stripped.endswith("}")):
        return None
    try:
        data = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get(prop_name) in (None, ""):
        return None
    return safe_display_value(data[prop_name])


def _extract_from_text(text: str, prop_name: str) -> Optional[str]:
    m = re.search(rf"{re.escape(prop_name)}[\s:=]+(\w+)", text, re.IGNORECASE)
    return m.group(1) if m else None


def extract_property_value(fiber_data: KmzFiberData, prop_name: str) -> Optional[str]:
    """Look up *prop_name* on a KMZ entry.

    Order: the feature's own properties, then the description as HTML,
    JSON and finally free text.  Malformed embedded content falls through
    to the next form.
    """
    raw = fiber_data.properties.get(prop_name) if fiber_data.properties else None
    if raw not in (None, ""):
        return safe_display_value(raw)

    description = safe_display_value(fiber_data.description)
    if not description:
        return None
    for extractor in (extract_from_html, _extract_from_json, _extract_from_text):
        value = extractor(description, prop_name)
        if value:
            return value
    return None


def get_capafo_value(fiber_data: KmzFiberData) -> Optional[str]:
    """``cb_capafo`` of a KMZ entry, falling back to its plain fiber size."""
    value = extract_property_value(fiber_data, "cb_capafo")
    if value:
        return value
    return fiber_data.fiber_size or None


def capafo_count(value: Optional[str]) -> int:
    """Numeric fiber count from a ``cb_capafo`` string ("144", "48ct", ...)."""
    if not value:
        return 0
    stripped = value.strip()
    if stripped.isdigit():
        return int(stripped)
    return extract_fiber_size(stripped)


def is_gigapower_data(fiber_data: KmzFiberData) -> bool:
    sro = extract_property_value(fiber_data, "c_sro")
    if sro and "PSA_317" in sro:
        return True

    description = lower_text(fiber_data.description)
    if "gigapower" in description or "att " in description:
        return True

    for prop in ("owner", "company"):
        value = (extract_property_value(fiber_data, prop) or "").lower()
        if "gigapower" in value or "att" in value:
            return True
    return False
