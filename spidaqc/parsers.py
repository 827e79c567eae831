"""parsers.py – normalise SPIDAcalc JSON into the Pole model.

Four input layouts are recognised.  They are tried in order and the first one
that yields at least one pole wins (see :data:`PARSE_STRATEGIES`):

    1. ``leads[].locations[].designs[]``     (full SPIDAcalc exchange file)
    2. ``locations[].designs[]``              (a single lead, flattened)
    3. ``poles[]``                            (already-normalised poles)
    4. ``clientData.poles[]``                 (client catalogue only)

Nothing here raises for malformed content.  Elements that cannot be placed on
the pole are skipped and counted in a :class:`ParseLog`.
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .formatting import meters_to_feet_inches, safe_display_value, to_float
from .models import (
    EXISTING,
    PROPOSED,
    REMEDY,
    AnalysisResults,
    ClearanceResult,
    ClientItem,
    Coordinates,
    Measurement,
    Owner,
    ParsedData,
    Pole,
    PoleAttachment,
    PoleLayer,
    PoleProperties,
    PoleWire,
    ProjectInfo,
    RemedyItem,
    WireEndPoint,
)

log = logging.getLogger(__name__)

# SPIDA design labels / layer types → canonical layer keys
DESIGN_LAYER_NAMES = {
    "measured": EXISTING,
    "existing": EXISTING,
    "recommended": PROPOSED,
    "proposed": PROPOSED,
    "remedy": REMEDY,
}

ATTACHMENT_GROUPS = (
    ("insulators", "INSULATOR"),
    ("equipments", "EQUIPMENT"),
    ("guys", "GUY"),
    ("anchors", "ANCHOR"),
)


@dataclass
class ParseLog:
    """Counts of skipped elements, keyed by reason."""
    dropped: Counter = field(default_factory=Counter)

    def drop(self, reason: str, detail: str = "") -> None:
        self.dropped[reason] += 1
        log.debug("skipped %s %s", reason, detail)

    def as_dict(self) -> Dict[str, int]:
        return dict(self.dropped)


# ---------------------------------------------------------------------------
# field helpers
# ---------------------------------------------------------------------------

def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _opt_str(value: Any) -> Optional[str]:
    text = safe_display_value(value)
    return text or None


def _measure(raw: Any) -> Optional[Measurement]:
    """``{"unit": "METRE", "value": 9.1}`` or a bare number → Measurement."""
    if isinstance(raw, dict):
        value = to_float(raw.get("value"))
        if value is None:
            return None
        return Measurement(value=value, unit=safe_display_value(raw.get("unit")) or "METRE")
    value = to_float(raw)
    return Measurement(value=value) if value is not None else None


def _owner(raw: Any) -> Owner:
    if isinstance(raw, dict):
        return Owner(id=safe_display_value(raw.get("id")), industry=_opt_str(raw.get("industry")))
    return Owner(id=safe_display_value(raw))


def _client_item(raw: Any) -> ClientItem:
    if isinstance(raw, dict):
        return ClientItem(
            size=safe_display_value(raw.get("size")),
            type=safe_display_value(raw.get("type")),
            messenger_size=safe_display_value(raw.get("messengerSize")),
        )
    return ClientItem(type=safe_display_value(raw))


def _height_label(height: Measurement) -> str:
    if height.unit.upper().startswith("MET"):
        return meters_to_feet_inches(height.value)
    return f"{height.value:.2f} {height.unit}"


def _geo_coords(block: Any) -> Optional[Coordinates]:
    """GeoJSON-style ``{"coordinates": [lon, lat]}`` → Coordinates."""
    coords = _as_dict(block).get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        lon, lat = to_float(coords[0]), to_float(coords[1])
        if lat is not None and lon is not None:
            return Coordinates(latitude=lat, longitude=lon)
    return None


def _coords_from_location(loc: dict) -> Optional[Coordinates]:
    """
    Coordinates of a SPIDA location, trying in turn:
    1. location.geographicCoordinate.coordinates   (GeoJSON order [lon, lat])
    2. location.mapLocation.coordinates            (same)
    3. flat latitude/longitude keys
    4. the first design's structure.poleLocation / geographicCoordinate
    """
    for key in ("geographicCoordinate", "mapLocation"):
        c = _geo_coords(loc.get(key))
        if c:
            return c

    lat = to_float(loc.get("latitude", loc.get("lat")))
    lon = to_float(loc.get("longitude", loc.get("lon", loc.get("long"))))
    if lat is not None and lon is not None:
        # exported in lon,lat order by mistake
        if abs(lat) < 5 and abs(lon) > 20:
            lat, lon = lon, lat
        return Coordinates(latitude=lat, longitude=lon)

    for design in _as_list(loc.get("designs")):
        structure = _as_dict(_as_dict(design).get("structure"))
        for key in ("poleLocation", "geographicCoordinate"):
            c = _geo_coords(structure.get(key))
            if c:
                return c
    return None


def layer_key(design: dict) -> str:
    """Canonical layer name for a SPIDA design.

    The label wins over ``layerType``; "Measured Design" and "Measured" both
    map to EXISTING.  Unknown labels are kept, upper-cased.
    """
    for key in ("label", "layerType"):
        text = safe_display_value(design.get(key)).strip().lower()
        if not text:
            continue
        for candidate in (text, text.split()[0]):
            if candidate in DESIGN_LAYER_NAMES:
                return DESIGN_LAYER_NAMES[candidate]
    raw = safe_display_value(design.get("label") or design.get("layerType"))
    return raw.strip().upper() or EXISTING


# ---------------------------------------------------------------------------
# structure elements
# ---------------------------------------------------------------------------

def _attachment_height(element: dict, attachment_type: str) -> Optional[Measurement]:
    if attachment_type == "ANCHOR":
        return Measurement(value=0.0)          # anchors sit at ground line
    for key in ("attachmentHeight", "offset", "height"):
        m = _measure(element.get(key))
        if m is not None:
            return m
    return None


def _attachment_from_json(element: dict, attachment_type: str, parse_log: ParseLog,
                          default_height: Optional[Measurement] = None) -> Optional[PoleAttachment]:
    height = _attachment_height(element, attachment_type) or default_height
    if height is None:
        parse_log.drop(f"{attachment_type.lower()} without height", safe_display_value(element.get("id")))
        return None

    client_item = element.get("clientItem")
    alias = _opt_str(element.get("clientItemAlias"))
    if alias is None and not isinstance(client_item, dict):
        alias = _opt_str(client_item)
    item = _as_dict(client_item)
    description = (
        safe_display_value(element.get("description"))
        or alias
        or safe_display_value(item.get("type"))
        or attachment_type.title()
    )
    return PoleAttachment(
        id=_opt_str(element.get("id")),
        external_id=_opt_str(element.get("externalId")),
        description=description,
        owner=_owner(element.get("owner")),
        type=_opt_str(element.get("type") or item.get("type")),
        client_item_alias=alias,
        model=_opt_str(item.get("model")),
        size=_opt_str(element.get("size") or item.get("size")),
        height=height,
        height_in_feet=_height_label(height),
        bearing=to_float(element.get("direction")),
        assembly_unit=safe_display_value(element.get("assemblyUnit")),
        attachment_type=safe_display_value(element.get("attachmentType")) or attachment_type,
    )


def _wire_links(structure: dict) -> Dict[str, List[str]]:
    """wire id → ids of attachments that list it in their ``wires``."""
    links: Dict[str, List[str]] = {}
    for group, _ in ATTACHMENT_GROUPS:
        for element in _as_list(structure.get(group)):
            att_id = _opt_str(_as_dict(element).get("id"))
            if not att_id:
                continue
            for wire_id in _as_list(element.get("wires")):
                links.setdefault(safe_display_value(wire_id), []).append(att_id)
    return links


def wire_from_json(raw: dict, links: Optional[Dict[str, List[str]]] = None) -> PoleWire:
    """One SPIDA wire entry as a PoleWire; *links* maps wire id → attachment ids."""
    links = links or {}
    wire_id = _opt_str(raw.get("id"))
    associated = [safe_display_value(a) for a in _as_list(raw.get("associatedAttachments"))]
    for key in ("attachmentId", "insulatorId"):
        if raw.get(key):
            associated.append(safe_display_value(raw[key]))
    for att_id in links.get(wire_id or "", []):
        if att_id not in associated:
            associated.append(att_id)

    item = _client_item(raw.get("clientItem"))
    return PoleWire(
        id=wire_id,
        external_id=_opt_str(raw.get("externalId")),
        owner=_owner(raw.get("owner")),
        attachment_height=_measure(raw.get("attachmentHeight")),
        size=safe_display_value(raw.get("size")),
        type=safe_display_value(raw.get("type")) or item.type,
        description=safe_display_value(raw.get("description")),
        tension=to_float(raw.get("tension")),
        client_item=item,
        associated_attachments=associated,
        usage_group=safe_display_value(raw.get("usageGroup")),
    )


def _wep_from_json(raw: dict) -> WireEndPoint:
    environment = safe_display_value(raw.get("environment"))
    return WireEndPoint(
        id=_opt_str(raw.get("id")),
        external_id=_opt_str(raw.get("externalId")),
        direction=to_float(raw.get("direction")),
        distance=_measure(raw.get("distance")),
        type=_opt_str(raw.get("type")),
        wires=[safe_display_value(w) for w in _as_list(raw.get("wires"))],
        coordinates=_geo_coords(raw.get("geographicCoordinate")),
        environment=environment,
        environment_status="E" if environment else "NE",
    )


def _clearance_from_json(raw: dict) -> ClearanceResult:
    return ClearanceResult(
        id=_opt_str(raw.get("id")),
        clearance_rule_name=safe_display_value(raw.get("clearanceRuleName") or raw.get("name")) or "Unknown",
        status=safe_display_value(raw.get("status")) or "UNKNOWN",
        distance=_measure(raw.get("distance")),
        required=_measure(raw.get("required")),
        failing_details=_opt_str(raw.get("failingDetails")),
    )


def _max_stress_ratio(design: dict) -> Optional[float]:
    explicit = to_float(_as_dict(design.get("analysisResults")).get("maxStressRatio"))
    if explicit is not None:
        return explicit
    actuals = [
        to_float(res.get("actual"))
        for case in _as_list(design.get("analysis"))
        for res in _as_list(_as_dict(case).get("results"))
        if isinstance(res, dict) and "pole" in safe_display_value(res.get("component")).lower()
    ]
    actuals = [a for a in actuals if a is not None]
    return max(actuals) if actuals else None


def _pole_properties(pole_json: dict, remedies: Iterable[Any]) -> PoleProperties:
    item = _as_dict(pole_json.get("clientItem"))
    length = _measure(item.get("height"))
    return PoleProperties(
        client_item_alias=_opt_str(pole_json.get("clientItemAlias")),
        species=_opt_str(item.get("species")),
        pole_class=_opt_str(item.get("classOfPole") or item.get("class")),
        length=length.value if length else None,
        glc=_measure(pole_json.get("glc")),
        agl=_measure(pole_json.get("agl")),
        remedies=[
            RemedyItem(description=safe_display_value(_as_dict(r).get("description") or r))
            for r in remedies
        ],
        environment=_opt_str(pole_json.get("environment")),
    )


def _layer_from_design(design: dict, layer_name: str, location_remedies: List[Any],
                       parse_log: ParseLog) -> PoleLayer:
    structure = _as_dict(design.get("structure"))

    attachments: List[PoleAttachment] = []
    for group, attachment_type in ATTACHMENT_GROUPS:
        for element in _as_list(structure.get(group)):
            if not isinstance(element, dict):
                parse_log.drop(f"malformed {group} entry")
                continue
            att = _attachment_from_json(element, attachment_type, parse_log)
            if att is not None:
                attachments.append(att)

    links = _wire_links(structure)
    wires = [wire_from_json(w, links) for w in _as_list(structure.get("wires")) if isinstance(w, dict)]
    weps = [_wep_from_json(w) for w in _as_list(structure.get("wireEndPoints")) if isinstance(w, dict)]

    remedies = _as_list(design.get("remedies")) or location_remedies
    return PoleLayer(
        layer_name=layer_name,
        attachments=attachments,
        wires=wires,
        wire_end_points=weps,
        pole_properties=_pole_properties(_as_dict(structure.get("pole")), remedies),
        clearance_results=[_clearance_from_json(c) for c in _as_list(design.get("clearanceResults"))
                           if isinstance(c, dict)],
        analysis_results=AnalysisResults(max_stress_ratio=_max_stress_ratio(design)),
    )


def _structure_id(designs: List[dict], label: Optional[str], index: int) -> str:
    for design in designs:
        pole_json = _as_dict(_as_dict(design.get("structure")).get("pole"))
        for key in ("id", "externalId"):
            value = _opt_str(pole_json.get(key))
            if value:
                return value
    return label or f"Pole-{index + 1}"


def _pole_from_location(loc: dict, index: int, parse_log: ParseLog) -> Optional[Pole]:
    designs = [d for d in _as_list(loc.get("designs")) if isinstance(d, dict)]
    if not designs:
        parse_log.drop("location without designs", safe_display_value(loc.get("label")))
        return None

    label = _opt_str(loc.get("label"))
    remedies = _as_list(loc.get("remedies"))
    layers: Dict[str, PoleLayer] = {}
    for design in designs:
        name = layer_key(design)
        if name in layers:
            parse_log.drop("duplicate design layer", f"{label}/{name}")
            continue
        layers[name] = _layer_from_design(design, name, remedies, parse_log)

    return Pole(
        structure_id=_structure_id(designs, label, index),
        alias=label,
        label=label,
        coordinates=_coords_from_location(loc),
        layers=layers,
    )


# ---------------------------------------------------------------------------
# input layouts
# ---------------------------------------------------------------------------

def _poles_from_locations(locations: Iterable[Any], parse_log: ParseLog) -> List[Pole]:
    poles = []
    for index, loc in enumerate(locations):
        if not isinstance(loc, dict):
            parse_log.drop("malformed location")
            continue
        pole = _pole_from_location(loc, index, parse_log)
        if pole is not None:
            poles.append(pole)
    return poles


def _extract_leads(data: dict, parse_log: ParseLog) -> List[Pole]:
    locations = [
        loc
        for lead in _as_list(data.get("leads"))
        for loc in _as_list(_as_dict(lead).get("locations"))
    ]
    return _poles_from_locations(locations, parse_log)


def _extract_locations(data: dict, parse_log: ParseLog) -> List[Pole]:
    return _poles_from_locations(_as_list(data.get("locations")), parse_log)


def _attachment_from_prebuilt(item: dict, parse_log: ParseLog) -> Optional[PoleAttachment]:
    attachment_type = safe_display_value(item.get("attachmentType")).upper() or "OTHER"
    # pre-built poles keep every attachment; a missing height reads as ground line
    return _attachment_from_json(item, attachment_type, parse_log, default_height=Measurement(value=0.0))


def _pole_from_prebuilt(raw: dict, parse_log: ParseLog) -> Optional[Pole]:
    structure_id = _opt_str(raw.get("structureId"))
    if not structure_id:
        parse_log.drop("pole without structureId")
        return None

    location = _as_dict(raw.get("location")) or _as_dict(raw.get("coordinates"))
    lat, lon = to_float(location.get("latitude")), to_float(location.get("longitude"))
    coordinates = Coordinates(lat, lon) if lat is not None and lon is not None else None

    layers: Dict[str, PoleLayer] = {}
    for name, layer_json in _as_dict(raw.get("layers")).items():
        layer_json = _as_dict(layer_json)
        attachments = [
            att for att in (
                _attachment_from_prebuilt(a, parse_log)
                for a in _as_list(layer_json.get("attachments")) if isinstance(a, dict)
            ) if att is not None
        ]
        props = _as_dict(layer_json.get("poleProperties"))
        layers[name] = PoleLayer(
            layer_name=name,
            attachments=attachments,
            wires=[wire_from_json(w, {}) for w in _as_list(layer_json.get("wires")) if isinstance(w, dict)],
            wire_end_points=[_wep_from_json(w) for w in _as_list(layer_json.get("wireEndPoints"))
                             if isinstance(w, dict)],
            pole_properties=PoleProperties(
                client_item_alias=_opt_str(props.get("clientItemAlias")),
                species=_opt_str(props.get("species")),
                pole_class=_opt_str(props.get("class")),
                length=to_float(props.get("length")),
                glc=_measure(props.get("glc")),
                agl=_measure(props.get("agl")),
                remedies=[RemedyItem(safe_display_value(_as_dict(r).get("description")))
                          for r in _as_list(props.get("remedies"))],
                environment=_opt_str(props.get("environment")),
            ) if props else None,
            clearance_results=[_clearance_from_json(c) for c in _as_list(layer_json.get("clearanceResults"))
                               if isinstance(c, dict)],
            analysis_results=AnalysisResults(
                max_stress_ratio=to_float(_as_dict(layer_json.get("analysisResults")).get("maxStressRatio"))
            ),
        )

    aliases = _as_list(raw.get("aliases"))
    alias = _opt_str(raw.get("alias")) or (
        _opt_str(_as_dict(aliases[0]).get("id") or aliases[0]) if aliases else None
    )
    return Pole(
        structure_id=structure_id,
        alias=alias,
        label=_opt_str(raw.get("label")) or structure_id,
        coordinates=coordinates,
        layers=layers,
    )


def _extract_poles(data: dict, parse_log: ParseLog) -> List[Pole]:
    poles = []
    for raw in _as_list(data.get("poles")):
        if not isinstance(raw, dict):
            parse_log.drop("malformed pole")
            continue
        pole = _pole_from_prebuilt(raw, parse_log)
        if pole is not None:
            poles.append(pole)
    return poles


def _extract_client_poles(data: dict, parse_log: ParseLog) -> List[Pole]:
    """Minimal EXISTING-only poles built from the client pole catalogue."""
    poles = []
    for index, raw in enumerate(_as_list(_as_dict(data.get("clientData")).get("poles"))):
        if not isinstance(raw, dict):
            parse_log.drop("malformed client pole")
            continue
        aliases = _as_list(raw.get("aliases"))
        alias = _opt_str(_as_dict(aliases[0]).get("id")) if aliases else None
        height = _measure(raw.get("height"))
        props = PoleProperties(
            client_item_alias=alias,
            species=_opt_str(raw.get("species")),
            pole_class=_opt_str(raw.get("classOfPole") or raw.get("class")),
            length=height.value if height else None,
            glc=Measurement(value=0.0),
        )
        structure_id = f"POLE-{index + 1}"
        poles.append(Pole(
            structure_id=structure_id,
            alias=alias,
            label=structure_id,
            layers={EXISTING: PoleLayer(layer_name=EXISTING, pole_properties=props)},
        ))
    return poles


Detector = Callable[[dict], bool]
Extractor = Callable[[dict, ParseLog], List[Pole]]

PARSE_STRATEGIES: List[Tuple[str, Detector, Extractor]] = [
    ("leads", lambda d: bool(_as_list(d.get("leads"))), _extract_leads),
    ("locations", lambda d: bool(_as_list(d.get("locations"))), _extract_locations),
    ("poles", lambda d: bool(_as_list(d.get("poles"))), _extract_poles),
    ("clientData.poles", lambda d: bool(_as_list(_as_dict(d.get("clientData")).get("poles"))),
     _extract_client_poles),
]


# ---------------------------------------------------------------------------
# public API
# ---------------------------------------------------------------------------

def _run_strategies(data: Any, parse_log: ParseLog) -> Tuple[Optional[str], List[Pole]]:
    if not isinstance(data, dict):
        log.warning("input is not a JSON object; no poles extracted")
        return None, []
    for name, detect, extract in PARSE_STRATEGIES:
        if not detect(data):
            continue
        poles = extract(data, parse_log)
        if poles:
            log.info("extracted %d poles using the '%s' layout", len(poles), name)
            return name, poles
        log.debug("'%s' layout present but produced no poles", name)
    log.warning("no recognizable pole structure found")
    return None, []


def extract_pole_data(data: Any, parse_log: Optional[ParseLog] = None) -> List[Pole]:
    """Poles from any supported layout; empty list when nothing is recognised."""
    return _run_strategies(data, parse_log or ParseLog())[1]


def _load_case_name(entry: Any) -> str:
    if isinstance(entry, dict):
        return safe_display_value(entry.get("name") or entry.get("id"))
    return safe_display_value(entry)


def extract_project_info(data: Any) -> ProjectInfo:
    """Project-level settings consulted by the load-case and settings rules."""
    data = _as_dict(data)
    load_cases = data.get("defaultLoadCases")
    return ProjectInfo(
        engineer=safe_display_value(data.get("engineer")),
        comments=safe_display_value(data.get("comments")),
        general_location=safe_display_value(data.get("generalLocation")),
        address=_as_dict(data.get("address")),
        default_load_cases=(
            [name for name in (_load_case_name(c) for c in load_cases) if name]
            if isinstance(load_cases, list) else None
        ),
    )


def parse_spida(data: Any) -> ParsedData:
    parse_log = ParseLog()
    shape, poles = _run_strategies(data, parse_log)
    if parse_log.dropped:
        log.info("skipped elements: %s", parse_log.as_dict())
    return ParsedData(
        poles=poles,
        project_info=extract_project_info(data),
        shape=shape,
        dropped=parse_log.as_dict(),
    )


def validate_pole_data(poles: List[Pole]) -> List[Pole]:
    """Copies of *poles* with ``is_valid`` set on every attachment.

    An attachment is valid when it names an assembly unit.  Advisory only.
    """
    validated = copy.deepcopy(poles)
    for pole in validated:
        for layer in pole.layers.values():
            for attachment in layer.attachments:
                attachment.is_valid = bool(attachment.assembly_unit.strip())
    return validated
