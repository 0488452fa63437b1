"""pysl: translate annotated Python into WGSL compute kernels."""

from .config import Config
from .errors import (Diagnostic, Diagnostics, Kind, OutputError, PyslError,
                     StructuralError, UnknownVarError)
from .state import SourceFile, State

__all__ = [
    "Config", "Diagnostic", "Diagnostics", "Kind", "OutputError", "PyslError",
    "SourceFile", "State", "StructuralError", "UnknownVarError",
]
