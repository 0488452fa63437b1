"""Errors raised by the compiler stages and the diagnostics they collect."""

import enum
from dataclasses import dataclass, field
from logging import getLogger
from typing import List, Optional

logger = getLogger(__name__)


class PyslError(Exception):
    pass


class StructuralError(PyslError):
    """Malformed directives or declarations; aborts the offending file."""


class UnknownVarError(PyslError):
    """A reference to a global variable that no System declares."""


class OutputError(PyslError):
    """The output directory or a kernel file could not be written."""


class Kind(enum.Enum):
    STRUCTURAL = "structural"
    REFERENCE = "reference"
    RESOURCE = "resource"
    ENVIRONMENT = "environment"


class Severity(enum.IntEnum):
    INFO = 0
    WARNING = 1
    ERROR = 2


@dataclass
class Diagnostic:
    severity: Severity
    kind: Kind
    message: str
    file: Optional[str] = None
    kernel: Optional[str] = None

    def __str__(self):
        where = []
        if self.file:
            where.append(f"file {self.file!r}")
        if self.kernel:
            where.append(f"kernel {self.kernel!r}")
        loc = f" ({', '.join(where)})" if where else ""
        return f"{self.severity.name.lower()}: {self.kind.value}: {self.message}{loc}"


_LEVELS = {Severity.INFO: 20, Severity.WARNING: 30, Severity.ERROR: 40}


@dataclass
class Diagnostics:
    """Collects diagnostics across a run; each one is logged as it is added."""

    items: List[Diagnostic] = field(default_factory=list)

    def add(self, severity: Severity, kind: Kind, message: str,
            file: Optional[str] = None, kernel: Optional[str] = None) -> Diagnostic:
        diag = Diagnostic(severity, kind, message, file, kernel)
        self.items.append(diag)
        logger.log(_LEVELS[severity], "%s", diag)
        return diag

    def error(self, kind: Kind, message: str, **where) -> Diagnostic:
        return self.add(Severity.ERROR, kind, message, **where)

    def warning(self, kind: Kind, message: str, **where) -> Diagnostic:
        return self.add(Severity.WARNING, kind, message, **where)

    def info(self, kind: Kind, message: str, **where) -> Diagnostic:
        return self.add(Severity.INFO, kind, message, **where)

    def of_kind(self, kind: Kind) -> List[Diagnostic]:
        return [d for d in self.items if d.kind == kind]

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.items if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.items if d.severity == Severity.WARNING]

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)
