"""Call graph of translated functions, for per-kernel dead code elimination."""

import enum
from dataclasses import dataclass, field
from logging import getLogger
from typing import Dict, List, Optional, Set, Tuple

from .errors import Diagnostics, Kind
from .state import Var

logger = getLogger(__name__)


class CallKind(enum.Enum):
    VALUE = "value"
    OUT_PARAM = "out-param"


@dataclass
class Function:
    """One node of the call graph."""
    name: str
    funcs: Dict[str, "Function"] = field(default_factory=dict)

    # global variables with atomic operations in this function
    atomics: Dict[str, Var] = field(default_factory=dict)

    # all global variables referenced by this function
    vars_used: Dict[str, Var] = field(default_factory=dict)

    params: List[str] = field(default_factory=list)

    # parameters written through (p.x = ...), passed as ptr<function, T>
    out_params: Set[str] = field(default_factory=set)

    # (param, callee, arg index): a parameter passed straight into a call
    arg_flows: List[Tuple[str, str, int]] = field(default_factory=list)

    @property
    def kind(self) -> CallKind:
        return CallKind.OUT_PARAM if self.out_params else CallKind.VALUE

    def add_atomic(self, vr: Var):
        self.atomics[vr.name] = vr

    def add_var_used(self, vr: Var):
        self.vars_used[vr.name] = vr

    def out_indexes(self) -> Set[int]:
        return {i for i, p in enumerate(self.params) if p in self.out_params}


@dataclass
class Resolution:
    functions: Dict[str, Function]
    atomic_vars: Dict[str, Var]
    touched_vars: Dict[str, Var]
    total_buffer_count: int


class FuncGraph:
    """Function registry, memoized by name."""

    def __init__(self, diagnostics: Optional[Diagnostics] = None):
        self.funcs: Dict[str, Function] = {}
        self.diagnostics = diagnostics or Diagnostics()

    def __contains__(self, name: str) -> bool:
        return name in self.funcs

    def get(self, name: str) -> Optional[Function]:
        return self.funcs.get(name)

    def recycle(self, name: str) -> Function:
        """Get or add the function of given name."""
        fn = self.funcs.get(name)
        if fn is None:
            fn = Function(name)
            self.funcs[name] = fn
        return fn

    # ── reachability ─────────────────────────────────────────────────────

    def all_funcs(self, name: str) -> Optional[Dict[str, Function]]:
        """All functions reachable from the named one, itself included."""
        root = self.funcs.get(name)
        if root is None:
            return None
        all_fns = {name: root}
        stack = [root]
        while stack:
            fn = stack.pop()
            for cnm, cfn in fn.funcs.items():
                if cnm in all_fns:
                    continue
                all_fns[cnm] = cfn
                stack.append(cfn)
        return all_fns

    def find_cycle(self, name: str) -> Optional[List[str]]:
        """A call cycle reachable from name, as a list of function names."""
        state: Dict[str, int] = {}
        path: List[str] = []

        def visit(fnm: str) -> Optional[List[str]]:
            state[fnm] = 1
            path.append(fnm)
            for cnm in sorted(self.funcs[fnm].funcs):
                st = state.get(cnm, 0)
                if st == 1:
                    return path[path.index(cnm):] + [cnm]
                if st == 0:
                    cyc = visit(cnm)
                    if cyc:
                        return cyc
            path.pop()
            state[fnm] = 2
            return None

        if name not in self.funcs:
            return None
        return visit(name)

    @staticmethod
    def vars_used(funcs: Dict[str, Function]) -> Tuple[Dict[str, Var], Dict[str, Var], int]:
        """Atomic vars, used vars and buffer count of a set of functions.

        The count always includes TensorStrides, plus nbuffs for split vars.
        """
        avars: Dict[str, Var] = {}
        uvars: Dict[str, Var] = {}
        for fn in funcs.values():
            avars.update(fn.atomics)
            uvars.update(fn.vars_used)
        nvars = 1
        for vr in uvars.values():
            nvars += vr.n_buffers
        return avars, uvars, nvars

    def resolve(self, kernel_name: str) -> Optional[Resolution]:
        funcs = self.all_funcs(kernel_name)
        if funcs is None:
            self.diagnostics.error(Kind.REFERENCE,
                                   f"kernel function named {kernel_name!r} not found",
                                   kernel=kernel_name)
            return None
        cycle = self.find_cycle(kernel_name)
        if cycle:
            self.diagnostics.warning(Kind.STRUCTURAL,
                                     "recursive calls are not supported in WGSL: "
                                     + " -> ".join(cycle), kernel=kernel_name)
        avars, uvars, nvars = self.vars_used(funcs)
        return Resolution(funcs, avars, uvars, nvars)

    # ── signatures ───────────────────────────────────────────────────────

    def resolve_signatures(self):
        """Propagate out-params through calls until nothing changes.

        A parameter passed directly as an out-param of a callee is itself an
        out-param of the caller.
        """
        changed = True
        while changed:
            changed = False
            for fn in self.funcs.values():
                for param, callee, idx in fn.arg_flows:
                    cfn = self.funcs.get(callee)
                    if cfn is None or param in fn.out_params:
                        continue
                    if idx < len(cfn.params) and cfn.params[idx] in cfn.out_params:
                        fn.out_params.add(param)
                        changed = True

    def describe(self) -> str:
        lines = []
        for fname in sorted(self.funcs):
            lines.append(fname)
            for cfnm in sorted(self.funcs[fname].funcs):
                lines.append("\t" + cfnm)
        return "\n".join(lines)
