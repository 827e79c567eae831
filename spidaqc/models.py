"""models.py – normalised pole / wire / span model shared by the engine.

Every SPIDA input shape is converted into these dataclasses by
:mod:`spidaqc.parsers`; the span engine, the KMZ reconciler and the QC rules
only ever look at this model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Canonical layer keys (lookups are case-insensitive)
EXISTING = "EXISTING"
PROPOSED = "PROPOSED"
REMEDY = "REMEDY"


class QCStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARNING = "WARNING"
    NOT_CHECKED = "NOT_CHECKED"


class SpanStatus(str, Enum):
    MATCHED = "MATCHED"
    ADDED_IN_REMEDY = "ADDED_IN_REMEDY"
    REMOVED_IN_REMEDY = "REMOVED_IN_REMEDY"


class ChangeType(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"


class FiberMatchStatus(str, Enum):
    """Outcome of comparing a span's JSON fiber count with the KMZ map."""
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    JSON_ONLY = "JSON_ONLY"
    KMZ_ONLY = "KMZ_ONLY"
    NO_FIBER_FOUND = "NO_FIBER_FOUND"
    NO_KMZ_NEARBY = "NO_KMZ_NEARBY"
    NO_POLE_COORDS = "NO_POLE_COORDS"
    NO_KMZ_DATA_LOADED = "NO_KMZ_DATA_LOADED"


# ---------------------------------------------------------------------------
# primitives
# ---------------------------------------------------------------------------

@dataclass
class Measurement:
    value: float
    unit: str = "METRE"


@dataclass
class Owner:
    id: str = ""
    industry: Optional[str] = None


@dataclass
class Coordinates:
    latitude: float
    longitude: float

    def as_tuple(self) -> Tuple[float, float]:
        return self.latitude, self.longitude


# ---------------------------------------------------------------------------
# pole structure
# ---------------------------------------------------------------------------

@dataclass
class PoleAttachment:
    description: str
    owner: Owner
    height: Measurement
    assembly_unit: str = ""
    id: Optional[str] = None
    external_id: Optional[str] = None
    type: Optional[str] = None
    client_item_alias: Optional[str] = None
    model: Optional[str] = None
    size: Optional[str] = None
    height_in_feet: Optional[str] = None
    bearing: Optional[float] = None
    attachment_type: str = "OTHER"
    is_valid: Optional[bool] = None


@dataclass
class ClientItem:
    size: str = ""
    type: str = ""
    messenger_size: str = ""


@dataclass
class PoleWire:
    owner: Owner = field(default_factory=Owner)
    id: Optional[str] = None
    external_id: Optional[str] = None
    attachment_height: Optional[Measurement] = None
    size: str = ""
    type: str = ""
    description: str = ""
    tension: Optional[float] = None
    client_item: ClientItem = field(default_factory=ClientItem)
    associated_attachments: List[str] = field(default_factory=list)
    usage_group: str = ""

    @property
    def key(self) -> Optional[str]:
        """Identity used when diffing layers: externalId, else id."""
        return self.external_id or self.id


@dataclass
class WireEndPoint:
    id: Optional[str] = None
    external_id: Optional[str] = None
    direction: Optional[float] = None
    distance: Optional[Measurement] = None
    type: Optional[str] = None
    wires: List[str] = field(default_factory=list)
    coordinates: Optional[Coordinates] = None
    environment: str = ""
    environment_status: str = "NE"


@dataclass
class RemedyItem:
    description: str


@dataclass
class PoleProperties:
    client_item_alias: Optional[str] = None
    species: Optional[str] = None
    pole_class: Optional[str] = None
    length: Optional[float] = None
    glc: Optional[Measurement] = None
    agl: Optional[Measurement] = None
    remedies: List[RemedyItem] = field(default_factory=list)
    environment: Optional[str] = None


@dataclass
class ClearanceResult:
    clearance_rule_name: str
    status: str = "UNKNOWN"
    id: Optional[str] = None
    distance: Optional[Measurement] = None
    required: Optional[Measurement] = None
    failing_details: Optional[str] = None


@dataclass
class AnalysisResults:
    max_stress_ratio: Optional[float] = None


@dataclass
class PoleLayer:
    layer_name: str
    attachments: List[PoleAttachment] = field(default_factory=list)
    wires: List[PoleWire] = field(default_factory=list)
    wire_end_points: List[WireEndPoint] = field(default_factory=list)
    pole_properties: Optional[PoleProperties] = None
    clearance_results: List[ClearanceResult] = field(default_factory=list)
    analysis_results: AnalysisResults = field(default_factory=AnalysisResults)

    def wires_by_id(self) -> Dict[str, PoleWire]:
        return {w.id: w for w in self.wires if w.id}

    def find_wire_end_point(self, wep_id: Optional[str]) -> Optional[WireEndPoint]:
        if not wep_id:
            return None
        return next((w for w in self.wire_end_points if w.id == wep_id), None)


@dataclass
class Pole:
    structure_id: str
    layers: Dict[str, PoleLayer] = field(default_factory=dict)
    alias: Optional[str] = None
    label: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    qc_results: Optional["QCResults"] = None

    def get_layer(self, name: str) -> Optional[PoleLayer]:
        """Case-insensitive layer lookup."""
        layer = self.layers.get(name)
        if layer is not None:
            return layer
        wanted = name.upper()
        for key, value in self.layers.items():
            if key.upper() == wanted:
                return value
        return None

    def identifiers(self) -> List[str]:
        return [i for i in (self.structure_id, self.label, self.alias) if i]


@dataclass
class ProjectInfo:
    engineer: str = ""
    comments: str = ""
    general_location: str = ""
    address: Dict[str, Any] = field(default_factory=dict)
    default_load_cases: Optional[List[str]] = None


@dataclass
class ParsedData:
    poles: List[Pole] = field(default_factory=list)
    project_info: ProjectInfo = field(default_factory=ProjectInfo)
    shape: Optional[str] = None                       # which input layout matched
    dropped: Dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# KMZ input
# ---------------------------------------------------------------------------

@dataclass
class KmzFiberData:
    coordinates: Optional[Coordinates]
    fiber_size: str = ""
    fiber_count: int = 0
    description: str = ""
    pole_id: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# span comparison
# ---------------------------------------------------------------------------

def span_key(pole_a: str, pole_b: str) -> str:
    """Order-independent key for the span between two poles."""
    return "-".join(sorted((pole_a, pole_b)))


@dataclass
class IdentifiedSpan:
    span_id: str
    pole_a_id: str
    pole_a_wep_id: str
    pole_b_id: str
    pole_b_wep_id: str

    @property
    def key(self) -> str:
        return span_key(self.pole_a_id, self.pole_b_id)


@dataclass
class WireChange:
    type: ChangeType
    pole_id: str
    wire_end_point_id: str
    wire: PoleWire
    previous_wire: Optional[PoleWire] = None
    change_details: List[str] = field(default_factory=list)


@dataclass
class SpanComparisonResult:
    pole_a_id: str
    pole_b_id: str
    span_status: SpanStatus
    proposed_span: Optional[IdentifiedSpan] = None
    remedy_span: Optional[IdentifiedSpan] = None
    changes_at_pole_a: List[WireChange] = field(default_factory=list)
    changes_at_pole_b: List[WireChange] = field(default_factory=list)

    @property
    def key(self) -> str:
        return span_key(self.pole_a_id, self.pole_b_id)


@dataclass
class DesignComparisonResults:
    comparison_description: str
    span_results: List[SpanComparisonResult] = field(default_factory=list)


# ---------------------------------------------------------------------------
# KMZ reconciliation
# ---------------------------------------------------------------------------

@dataclass
class ProcessedSpanData:
    from_pole_label: str
    to_pole_label: str
    proposed_fiber_size: str
    remedy_fiber_size: str
    proposed_fiber_count: int
    remedy_fiber_count: int
    kmz_fiber_size: str = "N/A"
    kmz_fiber_count: int = 0
    status: FiberMatchStatus = FiberMatchStatus.NO_KMZ_DATA_LOADED
    kmz_distance_m: Optional[float] = None
    proposed_wire_ids: List[str] = field(default_factory=list)
    remedy_wire_ids: List[str] = field(default_factory=list)


@dataclass
class KmzPoleMatch:
    kmz_data: KmzFiberData
    pole: Pole
    distance: float
    match_type: str
    cb_capafo: str = ""
    kmz_fiber_count: int = 0
    proposed_fiber_sizes: List[int] = field(default_factory=list)
    remedy_fiber_sizes: List[int] = field(default_factory=list)

    @property
    def has_match(self) -> bool:
        """A zero KMZ count never matches, even against a pole with no fiber."""
        kmz = self.kmz_fiber_count
        if kmz <= 0:
            return False
        return sum(self.proposed_fiber_sizes) == kmz or sum(self.remedy_fiber_sizes) == kmz


# ---------------------------------------------------------------------------
# QC results
# ---------------------------------------------------------------------------

@dataclass
class QCCheckResult:
    status: QCStatus = QCStatus.NOT_CHECKED
    message: str = "Not checked"
    details: List[str] = field(default_factory=list)


# Named rule slots in display order
QC_CHECK_NAMES: Tuple[str, ...] = (
    "owner_check",
    "anchor_check",
    "pole_spec_check",
    "assembly_units_check",
    "glc_check",
    "pole_order_check",
    "tension_check",
    "attachment_spec_check",
    "height_check",
    "spec_file_check",
    "clearance_check",
    "layer_comparison_check",
    "pole_stress_check",
    "station_name_check",
    "load_case_check",
    "project_settings_check",
    "messenger_size_check",
    "fiber_size_check",
    "wire_end_point_order_check",
)


@dataclass
class QCResults:
    owner_check: QCCheckResult = field(default_factory=QCCheckResult)
    anchor_check: QCCheckResult = field(default_factory=QCCheckResult)
    pole_spec_check: QCCheckResult = field(default_factory=QCCheckResult)
    assembly_units_check: QCCheckResult = field(default_factory=QCCheckResult)
    glc_check: QCCheckResult = field(default_factory=QCCheckResult)
    pole_order_check: QCCheckResult = field(default_factory=QCCheckResult)
    tension_check: QCCheckResult = field(default_factory=QCCheckResult)
    attachment_spec_check: QCCheckResult = field(default_factory=QCCheckResult)
    height_check: QCCheckResult = field(default_factory=QCCheckResult)
    spec_file_check: QCCheckResult = field(default_factory=QCCheckResult)
    clearance_check: QCCheckResult = field(default_factory=QCCheckResult)
    layer_comparison_check: QCCheckResult = field(default_factory=QCCheckResult)
    pole_stress_check: QCCheckResult = field(default_factory=QCCheckResult)
    station_name_check: QCCheckResult = field(default_factory=QCCheckResult)
    load_case_check: QCCheckResult = field(default_factory=QCCheckResult)
    project_settings_check: QCCheckResult = field(default_factory=QCCheckResult)
    messenger_size_check: QCCheckResult = field(default_factory=QCCheckResult)
    fiber_size_check: QCCheckResult = field(default_factory=QCCheckResult)
    wire_end_point_order_check: QCCheckResult = field(default_factory=QCCheckResult)
    overall_status: QCStatus = QCStatus.NOT_CHECKED
    pass_count: int = 0
    fail_count: int = 0
    warning_count: int = 0

    def checks(self) -> Dict[str, QCCheckResult]:
        return {name: getattr(self, name) for name in QC_CHECK_NAMES}


@dataclass
class ValidationSummary:
    valid_poles: int = 0
    invalid_poles: int = 0
    total_poles: int = 0
    pole_results: Dict[str, bool] = field(default_factory=dict)
    pass_count: int = 0
    fail_count: int = 0
    warning_count: int = 0

    @property
    def total_checks(self) -> int:
        return self.pass_count + self.fail_count + self.warning_count
