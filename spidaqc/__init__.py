"""spidaqc – QC assistant for SPIDAcalc pole-loading exports."""

from .compare import compare_designs
from .config import QCSettings, load_settings
from .exceptions import InputFileError, SettingsError, SpidaQCError
from .fiber import extract_fiber_size
from .fiber_compare import match_kmz_to_poles, process_fiber_comparison_data
from .parsers import parse_spida, validate_pole_data
from .qc_checks import run_all_qc_checks

__version__ = "0.1.0"

__all__ = [
    "compare_designs",
    "extract_fiber_size",
    "InputFileError",
    "load_settings",
    "match_kmz_to_poles",
    "parse_spida",
    "process_fiber_comparison_data",
    "QCSettings",
    "run_all_qc_checks",
    "SettingsError",
    "SpidaQCError",
    "validate_pole_data",
]
