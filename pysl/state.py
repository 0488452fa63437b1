"""Compilation state: systems, kernels, variable groups and extracted files.

A single State is created per run and threaded through every stage;
nothing here is module-global.
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import Config
from .errors import Diagnostics

DEFAULT_SYSTEM = "Default"


class TensorKind(enum.Enum):
    FLOAT32 = "float32"
    INT32 = "int32"
    UINT32 = "uint32"

    @property
    def sl_type(self) -> str:
        return {"float32": "f32", "int32": "i32", "uint32": "u32"}[self.value]

    @property
    def itemsize(self) -> int:
        return 4


@dataclass
class SourceFile:
    """One Python file as raw text lines."""
    name: str
    lines: List[str]

    @classmethod
    def from_text(cls, name: str, text: str) -> "SourceFile":
        return cls(name, text.splitlines())


class RegionKind(enum.Enum):
    WGSL = "wgsl"
    NOWGSL = "nowgsl"


@dataclass
class Region:
    """Span of extracted lines [start, end) inside a special region.

    start is the index of the kept directive line.
    """
    kind: RegionKind
    start: int
    end: int

    def contains(self, index: int) -> bool:
        return self.start <= index < self.end


@dataclass
class ExtractedFile:
    name: str
    lines: List[str]
    has_vars: bool = False
    regions: List[Region] = field(default_factory=list)
    package: str = ""

    @property
    def text(self) -> str:
        return "\n".join(self.lines) + "\n"

    def region_at(self, lineno: int) -> Optional[Region]:
        """Region containing the 1-based line number, as reported by ast."""
        for reg in self.regions:
            if reg.contains(lineno - 1):
                return reg
        return None


@dataclass
class Var:
    """One global system buffer variable."""
    name: str
    doc: str = ""

    # annotation text, e.g. "NDArray[np.float32]" or "list[ParamStruct]"
    type: str = ""

    # element type for non-tensor vars, e.g. "ParamStruct"
    elem_type: str = ""

    group: int = 0
    binding: int = 0

    # never written by any kernel
    read_only: bool = False

    # read-only by default, read_write for kernels that declare it
    read_or_write: bool = False

    tensor: bool = False
    tensor_dims: int = 1
    tensor_kind: Optional[TensorKind] = None
    tensor_index: int = 0

    # number of physical buffers backing this var
    nbuffs: int = 1

    # declared maximum element count, used to derive nbuffs
    max_elements: Optional[int] = None

    # set by layout when nbuffs > 1
    split: Optional[object] = None

    def sl_type(self) -> str:
        if self.tensor:
            return self.tensor_kind.sl_type
        return self.elem_type

    def index_func(self) -> str:
        return f"Index{self.tensor_dims}D"

    def index_stride(self, dim: int) -> str:
        return f"TensorStrides[{self.tensor_index * 10 + dim}]"

    def get_func(self) -> str:
        return "Get" + self.name

    def buffer_names(self) -> List[str]:
        if self.nbuffs > 1:
            return [f"{self.name}{i}" for i in range(self.nbuffs)]
        return [self.name]

    @property
    def n_buffers(self) -> int:
        return self.nbuffs if self.nbuffs > 1 else 1


@dataclass
class Group:
    name: str = ""
    doc: str = ""
    uniform: bool = False
    vars: List[Var] = field(default_factory=list)


@dataclass
class Kernel:
    """A kernel entry point; each one produces its own .wgsl file."""
    name: str
    args: str = ""
    # source of the kernel body, logged at debug level
    func_code: str = ""
    read_write_vars: Dict[str, bool] = field(default_factory=dict)
    system: str = DEFAULT_SYSTEM
    filename: str = ""
    lines: List[str] = field(default_factory=list)
    atomics: Dict[str, Var] = field(default_factory=dict)
    vars_used: Dict[str, Var] = field(default_factory=dict)
    n_buffers: int = 0

    @property
    def arg_names(self) -> List[str]:
        names = []
        for arg in self.args.split(","):
            arg = arg.strip()
            if arg:
                names.append(arg.split(":")[0].strip())
        return names


@dataclass
class System:
    name: str
    kernels: Dict[str, Kernel] = field(default_factory=dict)
    groups: List[Group] = field(default_factory=list)
    n_tensors: int = 0

    def all_vars(self) -> List[Var]:
        return [vr for gp in self.groups for vr in gp.vars]


@dataclass
class GetGlobalVar:
    """A GetX() accessor result held in a local, set back when its block exits."""
    var: Var
    tmp_var: str
    idx_expr: str
    read_write: bool = False


class State:
    """Holds the current Python -> WGSL processing state."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.diagnostics = Diagnostics()
        self.imports_dir = ""

        # extracted files in processing order: vars files first
        self.vars_files: Dict[str, ExtractedFile] = {}
        self.files: Dict[str, ExtractedFile] = {}

        self.import_packages: Dict[str, bool] = {
            pkg: True for pkg in self.config.import_packages}

        self.systems: Dict[str, System] = {DEFAULT_SYSTEM: System(DEFAULT_SYSTEM)}

        # Get<Name> accessor function names for non-tensor vars
        self.get_funcs: Dict[str, Var] = {}

        self.exclude_map = self.config.exclude_map

        # set per kernel during the emit pass
        self.cur_kernel: Optional[Kernel] = None

        # pending GetGlobalVar write-backs of the current function, one dict per block
        self.get_var_stack: List[Dict[str, GetGlobalVar]] = []

        self.func_graph = None
        self.kernel_funcs = None

    # ── lookup ───────────────────────────────────────────────────────────

    def system(self, name: str = "") -> System:
        """System of given name, made if not present; "" means Default."""
        name = name or DEFAULT_SYSTEM
        sy = self.systems.get(name)
        if sy is None:
            sy = System(name)
            self.systems[name] = sy
        return sy

    def global_var(self, name: str) -> Optional[Var]:
        for sy in self.systems.values():
            for gp in sy.groups:
                for vr in gp.vars:
                    if vr.name == name:
                        return vr
        return None

    def all_files(self) -> List[ExtractedFile]:
        return list(self.vars_files.values()) + list(self.files.values())

    def var_is_read_write(self, vr: Var) -> bool:
        """True if the current kernel may write the given var."""
        if vr.read_only:
            return False
        if not vr.read_or_write:
            return True
        if self.cur_kernel is None:
            return False
        return vr.name in self.cur_kernel.read_write_vars

    def var_is_uniform(self, vr: Var) -> bool:
        for sy in self.systems.values():
            for gp in sy.groups:
                if any(v is vr for v in gp.vars):
                    return gp.uniform
        return False

    # ── pipeline ─────────────────────────────────────────────────────────

    def run(self, files: List[SourceFile],
            imports: Optional[Dict[str, List[SourceFile]]] = None):
        from .translate import run
        return run(self, files, imports or {})
