"""Python AST to WGSL translator.

One visitor serves both passes. In Mode.GRAPH it walks every function to
record calls, global variable use, atomics and parameter mutation into the
FuncGraph, and its text output is thrown away. In Mode.EMIT it renders the
functions reachable from the current kernel.
"""

import ast
import enum
import re
from logging import getLogger
from typing import Dict, List, Optional, Set, Tuple

from .callgraph import CallKind, FuncGraph, Function
from .codegen_base import TYPE_NAMES, BaseCodeGenerator
from .errors import Kind, UnknownVarError
from .state import ExtractedFile, GetGlobalVar, Region, RegionKind, State, Var

logger = getLogger(__name__)


class Mode(enum.Enum):
    GRAPH = "graph"
    EMIT = "emit"


ATOMIC_OPS = {
    "add": "atomicAdd", "sub": "atomicSub",
    "max": "atomicMax", "min": "atomicMin",
    "and_": "atomicAnd", "or_": "atomicOr", "xor": "atomicXor",
    "exchange": "atomicExchange",
}

MATH_FUNCS = {
    "sqrt": "sqrt", "exp": "exp", "exp2": "exp2", "log": "log", "log2": "log2",
    "sin": "sin", "cos": "cos", "tan": "tan",
    "asin": "asin", "acos": "acos", "atan": "atan", "atan2": "atan2",
    "arcsin": "asin", "arccos": "acos", "arctan": "atan", "arctan2": "atan2",
    "sinh": "sinh", "cosh": "cosh", "tanh": "tanh",
    "floor": "floor", "ceil": "ceil", "trunc": "trunc",
    "fabs": "abs", "abs": "abs", "pow": "pow", "power": "pow",
    "clip": "clamp", "minimum": "min", "maximum": "max", "sign": "sign",
}

MATH_CONSTS = {
    "pi": "3.141592653589793",
    "e": "2.718281828459045",
}

RUNTIME_MODULES = ("slbool", "sltype", "slrand")

RUNTIME_RETURNS = {
    "slbool.from_bool": "i32",
    "slbool.is_true": "bool",
    "slbool.is_false": "bool",
    "sltype.mul64": "vec2<u32>",
    "sltype.add64": "vec2<u32>",
    "sltype.uint32_to_float32": "f32",
    "sltype.uint32_to_float32_11": "f32",
    "slrand.uint32x2": "vec2<u32>",
    "slrand.uint32": "u32",
    "slrand.uint32n": "u32",
    "slrand.float32": "f32",
    "slrand.float32x2": "vec2<f32>",
    "slrand.float32_range11": "f32",
    "slrand.float32_norm": "f32",
}

_ENUM_BASES = {"Enum", "IntEnum", "IntFlag", "Flag"}

_COMMENT_PREFIX = re.compile(r"^(\s*)# ?(.*)$")


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return ""


def _op_suffix(op: str) -> str:
    return op.rstrip("_").capitalize()


class WGSLTranslator(BaseCodeGenerator):
    """Translates extracted Python files into WGSL for one kernel at a time."""

    def __init__(self, st: State, graph: FuncGraph):
        super().__init__()
        self.st = st
        self.graph = graph
        self.mode = Mode.GRAPH

        self.struct_order: List[str] = []
        self.enums: Dict[str, Dict[str, int]] = {}
        self.methods: Dict[str, List[str]] = {}
        self.func_names: Set[str] = set()

        self._file = ""
        self._cur_fn: Optional[Function] = None
        self._ptr_params: Set[str] = set()
        self._emitted: Set[str] = set()
        self._write_warned: Set[Tuple[str, str]] = set()

        # get_var_stack depth at the start of each enclosing loop body
        self._loop_scopes: List[int] = []

        # atomic ops used on split vars, per var, for the current kernel
        self.split_atomics: Dict[str, Set[str]] = {}

    # ── declarations ─────────────────────────────────────────────────────

    def prepare(self, trees: List[Tuple[ExtractedFile, ast.Module]]):
        """Collect types and signatures of every file, then infer local types."""
        for _, tree in trees:
            for node in tree.body:
                if isinstance(node, ast.ClassDef):
                    self._declare_class(node)
                elif isinstance(node, ast.FunctionDef):
                    self.func_names.add(node.name)
        # a second sweep settles return types of calls across files
        for _ in range(2):
            for _, tree in trees:
                self._infer_types(tree)
        for _, tree in trees:
            self._refine_param_types(tree)

    def _declare_class(self, node: ast.ClassDef):
        if any(_base_name(b) in _ENUM_BASES for b in node.bases):
            members = {}
            val = 0
            for s in node.body:
                if not (isinstance(s, ast.Assign) and isinstance(s.targets[0], ast.Name)):
                    continue
                if isinstance(s.value, ast.Constant) and isinstance(s.value.value, int):
                    val = s.value.value
                elif isinstance(s.value, ast.Call) and _base_name(s.value.func) == "auto":
                    val = val + 1 if members else 1
                else:
                    continue
                members[s.targets[0].id] = val
            self.enums[node.name] = members
            return
        fields = {}
        for s in node.body:
            if isinstance(s, ast.AnnAssign) and isinstance(s.target, ast.Name):
                fields[s.target.id] = self._annotation_type(s.annotation) or self.INT
            elif isinstance(s, ast.FunctionDef):
                self.methods.setdefault(s.name, []).append(node.name)
                self.func_names.add(f"{node.name}.{s.name}")
        self.struct_fields[node.name] = fields
        self.struct_order.append(node.name)

    def _annotation_type(self, node):
        typ = super()._annotation_type(node)
        if typ in self.enums:
            return self.INT
        return typ

    def _infer_stmt_types(self, node):
        if isinstance(node, ast.ClassDef):
            if node.name in self.struct_fields:
                for s in node.body:
                    if isinstance(s, ast.FunctionDef):
                        self._infer_function_types(s, f"{node.name}.{s.name}", node.name)
            return
        super()._infer_stmt_types(node)

    def _infer_expr_type(self, node):
        node = self._strip_pkg(node)
        if isinstance(node, ast.Call):
            func = self._strip_pkg(node.func)
            if isinstance(func, ast.Name):
                vr = self.st.get_funcs.get(func.id)
                if vr is not None:
                    return vr.sl_type()
                if func.id == "len":
                    return self.UINT
                if func.id == "round":
                    return self.INT
            elif isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name) \
                    and func.value.id not in self._declared_vars:
                mod, attr = func.value.id, func.attr
                if mod == "math":
                    return self.FLOAT
                if mod in ("np", "numpy"):
                    return TYPE_NAMES.get(attr, self.FLOAT)
                if mod in RUNTIME_MODULES:
                    return RUNTIME_RETURNS.get(f"{mod}.{attr}", TYPE_NAMES.get(attr, self.INT))
                if mod == "atomic" and node.args and isinstance(node.args[0], ast.Name):
                    vr = self.st.global_var(node.args[0].id)
                    return vr.sl_type() if vr else self.INT
                if mod in self.struct_fields:
                    return self.func_return_types.get(f"{mod}.{attr}", self.INT)
            if isinstance(func, ast.Attribute):
                typ = self._struct_type(func.value, func.attr)
                if typ:
                    return self.func_return_types.get(f"{typ}.{func.attr}", self.INT)
        if isinstance(node, ast.Subscript) and isinstance(node.value, ast.Name):
            vr = self.st.global_var(node.value.id)
            if vr is not None:
                return vr.sl_type()
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            if node.value.id in self.enums:
                return self.INT
            if node.value.id in ("math", "np", "numpy") and node.attr in MATH_CONSTS:
                return self.FLOAT
        return super()._infer_expr_type(node)

    def _struct_type(self, node: ast.expr, method: str = "") -> Optional[str]:
        typ = self._infer_expr_type(node)
        if typ in self.struct_fields:
            return typ
        owners = self.methods.get(method, [])
        if len(owners) == 1:
            return owners[0]
        return None

    # ── passes ───────────────────────────────────────────────────────────

    def build_graph(self, ef: ExtractedFile, tree: ast.Module):
        self.mode = Mode.GRAPH
        self._gen_module(ef, tree)

    def begin_kernel(self, kernel):
        self.st.cur_kernel = kernel
        self._emitted = set()
        self.split_atomics = {}

    def translate_file(self, ef: ExtractedFile, tree: ast.Module) -> str:
        """WGSL text of one file for the current kernel."""
        self.mode = Mode.EMIT
        return self._gen_module(ef, tree)

    def _gen_module(self, ef: ExtractedFile, tree: ast.Module) -> str:
        self.lines = []
        self.indent = 0
        self._file = ef.name
        items: List[Tuple[int, object]] = [(node.lineno - 1, node) for node in tree.body]
        items.extend((reg.start, reg) for reg in ef.regions if reg.kind == RegionKind.WGSL)
        items.sort(key=lambda it: it[0])
        for _, item in items:
            if isinstance(item, Region):
                if self.mode is Mode.EMIT:
                    self._gen_passthrough(ef, item)
                continue
            if ef.region_at(item.lineno) is not None:
                continue
            self._gen_toplevel(item)
        return "\n".join(self.lines)

    def _gen_passthrough(self, ef: ExtractedFile, reg: Region):
        for ln in ef.lines[reg.start + 1:reg.end]:
            m = _COMMENT_PREFIX.match(ln)
            self.lines.append(m.group(1) + m.group(2) if m else ln)
        self.lines.append("")

    def _gen_toplevel(self, node: ast.stmt):
        if isinstance(node, (ast.Import, ast.ImportFrom, ast.Pass)):
            return
        if isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant):
            return
        if isinstance(node, ast.FunctionDef):
            self._gen_func_def(node)
        elif isinstance(node, ast.ClassDef):
            self._gen_class(node)
        elif isinstance(node, (ast.Assign, ast.AnnAssign)):
            self._gen_const(node)
        elif isinstance(node, ast.If) and "__name__" in ast.unparse(node.test):
            return
        else:
            self._unsupported(node, "module-level " + type(node).__name__)

    def _gen_const(self, node):
        target = node.targets[0] if isinstance(node, ast.Assign) else node.target
        if not isinstance(target, ast.Name) or node.value is None:
            return
        if self.st.global_var(target.id) is not None:
            return
        if self.mode is not Mode.EMIT or not self._is_const_expr(node.value):
            return
        typ = self.global_types.get(target.id) or self._infer_expr_type(node.value)
        self._emit(f"const {target.id}: {typ} = {self._gen_typed(node.value, typ)};")

    def _is_const_expr(self, node: ast.expr) -> bool:
        if isinstance(node, ast.Constant):
            return isinstance(node.value, (bool, int, float))
        if isinstance(node, ast.UnaryOp):
            return self._is_const_expr(node.operand)
        if isinstance(node, ast.BinOp):
            return self._is_const_expr(node.left) and self._is_const_expr(node.right)
        if isinstance(node, ast.Name):
            return node.id in self.global_types
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            return node.value.id in self.enums or node.attr in MATH_CONSTS
        return False

    def _gen_class(self, node: ast.ClassDef):
        if node.name in self.enums:
            if self.mode is Mode.EMIT:
                for member, val in self.enums[node.name].items():
                    self._emit(f"const {node.name}_{member}: i32 = {val};")
                self._emit("")
            return
        fields = self.struct_fields.get(node.name, {})
        if self.mode is Mode.EMIT and fields:
            self._emit(f"struct {node.name} {{")
            for fname, ftype in fields.items():
                self._emit(f"    {fname}: {ftype},")
            self._emit("}")
            self._emit("")
        for s in node.body:
            if isinstance(s, ast.FunctionDef):
                self._gen_func_def(s, node.name)

    def _gen_func_def(self, node: ast.FunctionDef, cls: Optional[str] = None):
        key = f"{cls}.{node.name}" if cls else node.name
        if node.name in self.st.exclude_map or key in self.st.exclude_map:
            return
        if self.mode is Mode.GRAPH:
            fn = self.graph.recycle(key)
            fn.params = [a.arg for a in node.args.args]
            self._cur_fn = fn
            self._gen_function(node, key)
            self._cur_fn = None
            return
        if key not in self.st.kernel_funcs or key in self._emitted:
            return
        self._emitted.add(key)
        self._gen_function(node, key)

    # ── functions ────────────────────────────────────────────────────────

    def _gen_function(self, node: ast.FunctionDef, key: str = ""):
        key = key or node.name
        fn = self.graph.get(key)
        ptrs = set(fn.out_params) if fn else set()
        old = (self._current_func, self._declared_vars, self._ptr_params)
        self._current_func = key
        self._declared_vars = {a.arg for a in node.args.args}
        self._ptr_params = ptrs
        self.st.get_var_stack = []
        self._loop_scopes = []

        rebound = set()
        for sub in ast.walk(node):
            if isinstance(sub, (ast.Assign, ast.AugAssign, ast.AnnAssign)):
                targets = sub.targets if isinstance(sub, ast.Assign) else [sub.target]
                rebound.update(t.id for t in targets if isinstance(t, ast.Name))
        rebound = {a.arg for a in node.args.args if a.arg in rebound and a.arg not in ptrs}

        ptypes = self.func_param_types.get(key, {})
        params = []
        for a in node.args.args:
            typ = ptypes.get(a.arg, self.INT)
            pname = self._local_name(a.arg)
            if a.arg in ptrs:
                params.append(f"{pname}: ptr<function, {typ}>")
            elif a.arg in rebound:
                params.append(f"{pname}_in: {typ}")
            else:
                params.append(f"{pname}: {typ}")
        ret = self.func_return_types.get(key)
        ret_str = f" -> {ret}" if ret else ""

        self._emit(f"fn {key.replace('.', '_')}({', '.join(params)}){ret_str} {{")
        self.indent += 1
        for a in node.args.args:
            if a.arg in rebound:
                pname = self._local_name(a.arg)
                self._emit(f"var {pname} = {pname}_in;")
        for name in self._hoisted_locals(node.body):
            self._declared_vars.add(name)
            self._emit(f"var {self._local_name(name)}: {self._type_of_var(name)};")
        self._gen_scoped(node.body)
        self.indent -= 1
        self._emit("}")
        self._emit("")

        self._current_func, self._declared_vars, self._ptr_params = old

    def _gen_body(self, body: List[ast.stmt]):
        self.indent += 1
        self._gen_scoped(body)
        self.indent -= 1

    def _gen_scoped(self, body: List[ast.stmt]):
        """Statements of one block; GetX fetched here are set back when it exits."""
        self.st.get_var_stack.append({})
        for s in body:
            self._gen_stmt(s)
        if not body or not isinstance(body[-1], (ast.Return, ast.Break, ast.Continue)):
            self._flush_get_vars(1)
        self.st.get_var_stack.pop()

    def _flush_get_vars(self, depth: Optional[int] = None):
        """Write back the GetX locals of the innermost depth scopes (all if None)."""
        if self.mode is not Mode.EMIT or not self.st.get_var_stack:
            return
        stack = self.st.get_var_stack
        scopes = stack if depth is None else stack[len(stack) - depth:]
        for gvars in reversed(scopes):
            for gv in gvars.values():
                if gv.read_write:
                    self._emit(f"{gv.var.name}[{gv.idx_expr}] = {self._local_name(gv.tmp_var)};")

    def _gen_stmt(self, node: ast.stmt):
        if isinstance(node, (ast.For, ast.While)):
            self._loop_scopes.append(len(self.st.get_var_stack))
            super()._gen_stmt(node)
            self._loop_scopes.pop()
            return
        if isinstance(node, (ast.Break, ast.Continue)) and self._loop_scopes:
            self._flush_get_vars(len(self.st.get_var_stack) - self._loop_scopes[-1])
        super()._gen_stmt(node)

    def _gen_return(self, node: ast.Return):
        self._flush_get_vars()
        super()._gen_return(node)

    # ── graph bookkeeping ────────────────────────────────────────────────

    def _note_var(self, vr: Var, atomic: bool = False):
        if self.mode is Mode.GRAPH and self._cur_fn is not None:
            self._cur_fn.add_var_used(vr)
            if atomic:
                self._cur_fn.add_atomic(vr)

    def _note_call(self, key: str, args: List[ast.expr]):
        if self.mode is not Mode.GRAPH or self._cur_fn is None:
            return
        self._cur_fn.funcs[key] = self.graph.recycle(key)
        for i, a in enumerate(args):
            if isinstance(a, ast.Name) and a.id in self._cur_fn.params:
                self._cur_fn.arg_flows.append((a.id, key, i))

    def _note_store(self, target: ast.expr):
        node = target
        while isinstance(node, (ast.Attribute, ast.Subscript)):
            node = node.value
        if not isinstance(node, ast.Name):
            return
        if node.id in self._declared_vars:
            if node is not target and self.mode is Mode.GRAPH and self._cur_fn is not None \
                    and node.id in self._cur_fn.params:
                self._cur_fn.out_params.add(node.id)
            return
        vr = self.st.global_var(node.id)
        if vr is not None:
            self._check_writable(vr)

    def _check_writable(self, vr: Var):
        if self.mode is not Mode.EMIT or self.st.cur_kernel is None:
            return
        if self.st.var_is_read_write(vr) and not self.st.var_is_uniform(vr):
            return
        key = (self.st.cur_kernel.name, vr.name)
        if key in self._write_warned:
            return
        self._write_warned.add(key)
        self.st.diagnostics.warning(
            Kind.REFERENCE,
            f"variable {vr.name!r} is written but is read-only in this kernel",
            file=self._file, kernel=self.st.cur_kernel.name)

    def _unsupported(self, node: ast.AST, what: str):
        if self.mode is Mode.GRAPH:
            line = getattr(node, "lineno", 0)
            self.st.diagnostics.warning(Kind.STRUCTURAL,
                                        f"unsupported syntax at line {line}: {what}",
                                        file=self._file)

    # ── statements ───────────────────────────────────────────────────────

    def _gen_assign(self, target: ast.expr, value: ast.expr):
        self._note_store(target)
        if isinstance(target, ast.Name):
            vr = self._get_call_var(value)
            if vr is not None:
                self._gen_get_assign(target, vr, value)
                return
        tensor = self._tensor_target(target)
        if tensor is not None:
            vr, idx = tensor
            self._emit(self._tensor_write(vr, idx, self._gen_expr(value)) + ";")
            return
        super()._gen_assign(target, value)

    def _gen_ann_assign(self, node: ast.AnnAssign):
        self._note_store(node.target)
        super()._gen_ann_assign(node)

    def _gen_aug_assign(self, node: ast.AugAssign):
        self._note_store(node.target)
        tensor = self._tensor_target(node.target)
        if tensor is not None:
            vr, idx = tensor
            if isinstance(node.op, (ast.Pow, ast.FloorDiv, ast.Div, ast.Mod)):
                binop = self._gen_binop(ast.BinOp(left=node.target, op=node.op, right=node.value))
            else:
                cur = self._tensor_read(vr, idx)
                binop = f"({cur} {self._op_symbol(node.op)} {self._gen_expr(node.value)})"
            self._emit(self._tensor_write(vr, idx, binop) + ";")
            return
        super()._gen_aug_assign(node)

    def _get_call_var(self, value: ast.expr) -> Optional[Var]:
        if not (isinstance(value, ast.Call) and isinstance(value.func, ast.Name)):
            return None
        name = value.func.id
        vr = self.st.get_funcs.get(name)
        if vr is not None:
            return vr
        if name.startswith("Get") and name[3:4].isupper() and name not in self.func_names:
            raise UnknownVarError(f"{name}: global variable {name[3:]!r} not found")
        return None

    def _gen_get_assign(self, target: ast.Name, vr: Var, call: ast.Call):
        idx = self._gen_expr(call.args[0]) if call.args else "0"
        self._note_var(vr)
        name = self._local_name(target.id)
        if target.id in self._declared_vars:
            self._emit(f"{name} = {vr.name}[{idx}];")
        else:
            self._declared_vars.add(target.id)
            self._emit(f"var {name} = {vr.name}[{idx}];")
        rw = (self.mode is Mode.EMIT and self.st.var_is_read_write(vr)
              and not self.st.var_is_uniform(vr))
        if self.st.get_var_stack:
            self.st.get_var_stack[-1][target.id] = GetGlobalVar(vr, target.id, idx, rw)

    # ── global tensors ───────────────────────────────────────────────────

    def _global_of(self, node: ast.expr) -> Optional[Var]:
        if isinstance(node, ast.Name) and node.id not in self._declared_vars:
            return self.st.global_var(node.id)
        return None

    def _tensor_target(self, target: ast.expr) -> Optional[Tuple[Var, str]]:
        if isinstance(target, ast.Subscript):
            vr = self._global_of(target.value)
            if vr is not None and vr.tensor:
                self._note_var(vr)
                return vr, self._tensor_index(vr, target.slice)
        return None

    def _tensor_index(self, vr: Var, index: ast.expr) -> str:
        idxs = index.elts if isinstance(index, ast.Tuple) else [index]
        if len(idxs) != vr.tensor_dims and self.mode is Mode.GRAPH:
            self.st.diagnostics.warning(
                Kind.REFERENCE,
                f"tensor {vr.name!r} has {vr.tensor_dims} dims but is indexed with {len(idxs)}",
                file=self._file)
        strides = [vr.index_stride(d) for d in range(len(idxs))]
        coords = [f"u32({self._gen_expr(ix)})" for ix in idxs]
        return f"Index{len(idxs)}D({', '.join(strides + coords)})"

    def _is_atomic(self, vr: Var) -> bool:
        kn = self.st.cur_kernel
        return (self.mode is Mode.EMIT and kn is not None and vr.name in kn.atomics
                and self.st.var_is_read_write(vr))

    def _tensor_read(self, vr: Var, idx: str) -> str:
        if vr.nbuffs > 1:
            return f"{vr.name}_Get({idx})"
        if self._is_atomic(vr):
            return f"atomicLoad(&{vr.name}[{idx}])"
        return f"{vr.name}[{idx}]"

    def _tensor_write(self, vr: Var, idx: str, value: str) -> str:
        if vr.nbuffs > 1:
            return f"{vr.name}_Set({value}, {idx})"
        if self._is_atomic(vr):
            return f"atomicStore(&{vr.name}[{idx}], {value})"
        return f"{vr.name}[{idx}] = {value}"

    # ── expressions ──────────────────────────────────────────────────────

    def _strip_pkg(self, node):
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) \
                and node.value.id in self.st.import_packages:
            return ast.copy_location(ast.Name(id=node.attr, ctx=node.ctx), node)
        return node

    def _gen_expr(self, node):
        node = self._strip_pkg(node)
        if isinstance(node, ast.Subscript):
            vr = self._global_of(node.value)
            if vr is not None:
                self._note_var(vr)
                if vr.tensor:
                    return self._tensor_read(vr, self._tensor_index(vr, node.slice))
                return f"{vr.name}[{self._gen_expr(node.slice)}]"
        if isinstance(node, ast.Attribute):
            return self._gen_attribute(node)
        return super()._gen_expr(node)

    def _gen_name(self, node: ast.Name) -> str:
        name = node.id
        if name in self._ptr_params:
            return f"(*{self._local_name(name)})"
        if name in self._declared_vars:
            return self._local_name(name)
        vr = self.st.global_var(name)
        if vr is not None:
            self._note_var(vr)
        return name

    def _gen_attribute(self, node: ast.Attribute) -> str:
        base = node.value
        if isinstance(base, ast.Name) and base.id not in self._declared_vars:
            if base.id in self.enums and node.attr in self.enums[base.id]:
                return f"{base.id}_{node.attr}"
            if base.id in ("math", "np", "numpy") and node.attr in MATH_CONSTS:
                return MATH_CONSTS[node.attr]
        if node.attr == "value" and isinstance(base, ast.Attribute) \
                and isinstance(base.value, ast.Name) and base.value.id in self.enums:
            return self._gen_attribute(base)
        return f"{self._gen_expr(base)}.{node.attr}"

    def _gen_args(self, args: List[ast.expr], outs: Set[int] = frozenset()) -> str:
        parts = []
        for i, a in enumerate(args):
            if i in outs:
                if isinstance(a, ast.Name) and a.id in self._ptr_params:
                    parts.append(self._local_name(a.id))
                else:
                    parts.append(f"&{self._gen_expr(a)}")
            else:
                parts.append(self._gen_expr(a))
        return ", ".join(parts)

    def _gen_call_args(self, key: str, args: List[ast.expr]) -> str:
        """Arguments of a call to a translated function; out-params pass &arg."""
        fn = self.graph.get(key)
        if fn is None or fn.kind is CallKind.VALUE:
            return self._gen_args(args)
        return self._gen_args(args, fn.out_indexes())

    def _gen_binop(self, node: ast.BinOp) -> str:
        # WGSL / and % truncate; Python // and % round toward -inf
        if isinstance(node.op, (ast.FloorDiv, ast.Mod)):
            lt = self._infer_expr_type(node.left)
            rt = self._infer_expr_type(node.right)
            fn = "floordiv" if isinstance(node.op, ast.FloorDiv) else "mod"
            if lt == rt == self.INT:
                a, b = self._literal_int(node.left), self._literal_int(node.right)
                if a is not None and b is not None and b != 0:
                    val = a // b if fn == "floordiv" else a % b
                    return str(val) if val >= 0 else f"({val})"
                return f"sltype_{fn}_i32({self._gen_expr(node.left)}, {self._gen_expr(node.right)})"
            if fn == "mod" and self.FLOAT in (lt, rt):
                return f"sltype_mod_f32({self._float_arg(node.left)}, {self._float_arg(node.right)})"
        return super()._gen_binop(node)

    def _literal_int(self, node: ast.expr) -> Optional[int]:
        if isinstance(node, ast.Constant) and type(node.value) is int:
            return node.value
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
            val = self._literal_int(node.operand)
            return -val if val is not None else None
        return None

    def _float_arg(self, node: ast.expr) -> str:
        text = self._gen_expr(node)
        if self._infer_expr_type(node) in (self.INT, self.UINT) and not self._is_literal(node):
            return f"f32({text})"
        return text

    def _gen_call(self, node: ast.Call) -> str:
        func = self._strip_pkg(node.func)
        if isinstance(func, ast.Name):
            return self._gen_name_call(func.id, node)
        if isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name) \
                and func.value.id not in self._declared_vars:
            mod, attr = func.value.id, func.attr
            if mod == "math" or (mod in ("np", "numpy") and attr not in TYPE_NAMES):
                return self._gen_math(attr, node)
            if mod in ("np", "numpy"):
                return f"{TYPE_NAMES[attr]}({self._gen_args(node.args)})"
            if mod == "atomic":
                return self._gen_atomic(node, attr)
            if mod in RUNTIME_MODULES:
                if mod == "sltype" and attr in TYPE_NAMES:
                    return f"{TYPE_NAMES[attr]}({self._gen_args(node.args)})"
                return f"{mod}_{attr}({self._gen_args(node.args)})"
            if mod in self.struct_fields:
                key = f"{mod}.{attr}"
                self._note_call(key, node.args)
                return f"{mod}_{attr}({self._gen_call_args(key, node.args)})"
        if isinstance(func, ast.Attribute):
            return self._gen_method_call(func, node)
        self._unsupported(node, "call of " + type(func).__name__)
        return f"/* unsupported: call of {type(func).__name__} */"

    def _gen_name_call(self, name: str, node: ast.Call) -> str:
        vr = self.st.get_funcs.get(name)
        if vr is not None:
            self._note_var(vr)
            idx = self._gen_expr(node.args[0]) if node.args else "0"
            return f"{vr.name}[{idx}]"
        self._get_call_var(node)

        if name in TYPE_NAMES:
            return f"{TYPE_NAMES[name]}({self._gen_args(node.args)})"
        if name == "len" and len(node.args) == 1:
            vr = self._global_of(node.args[0])
            if vr is not None:
                self._note_var(vr)
                return f"arrayLength(&{vr.name})"
        if name in ("min", "max") and len(node.args) >= 2:
            expr = self._gen_expr(node.args[0])
            for a in node.args[1:]:
                expr = f"{name}({expr}, {self._gen_expr(a)})"
            return expr
        if name == "abs" and len(node.args) == 1:
            return f"abs({self._gen_expr(node.args[0])})"
        if name == "round" and len(node.args) == 1:
            return f"i32(round({self._float_arg(node.args[0])}))"
        if name in self.struct_fields:
            return self._gen_constructor(name, node)

        self._note_call(name, node.args)
        return f"{name}({self._gen_call_args(name, node.args)})"

    def _gen_constructor(self, name: str, node: ast.Call) -> str:
        fields = self.struct_fields[name]
        if not node.args and not node.keywords:
            return f"{name}()"
        values = dict(zip(fields, node.args))
        for kw in node.keywords:
            values[kw.arg] = kw.value
        parts = []
        for fname, ftype in fields.items():
            if fname in values:
                parts.append(self._gen_typed(values[fname], ftype))
            else:
                parts.append(self._zero_value(ftype))
        return f"{name}({', '.join(parts)})"

    def _zero_value(self, typ: str) -> str:
        return {"f32": "0.0", "i32": "0", "u32": "0u", "bool": "false"}.get(typ, f"{typ}()")

    def _gen_method_call(self, func: ast.Attribute, node: ast.Call) -> str:
        typ = self._struct_type(func.value, func.attr)
        if typ is None:
            self._unsupported(node, f"method call .{func.attr}() on unknown type")
            return f"/* unsupported: method {func.attr} */"
        key = f"{typ}.{func.attr}"
        args = [func.value] + list(node.args)
        self._note_call(key, args)
        return f"{typ}_{func.attr}({self._gen_call_args(key, args)})"

    def _gen_math(self, attr: str, node: ast.Call) -> str:
        fname = MATH_FUNCS.get(attr)
        if fname is None:
            self._unsupported(node, f"math function {attr}")
            return f"/* unsupported: {attr} */"
        args = ", ".join(self._float_arg(a) for a in node.args)
        return f"{fname}({args})"

    def _gen_atomic(self, node: ast.Call, op: str) -> str:
        if op not in ATOMIC_OPS or len(node.args) != 3:
            self._unsupported(node, f"atomic.{op} with {len(node.args)} arguments")
            return f"/* unsupported: atomic.{op} */"
        target = node.args[0]
        vr = self._global_of(target)
        if vr is None:
            raise UnknownVarError(
                f"atomic target {ast.unparse(target)!r} is not a global variable")
        self._note_var(vr, atomic=True)
        self._check_writable(vr)
        val = self._gen_expr(node.args[2])
        if not vr.tensor:
            return f"{ATOMIC_OPS[op]}(&{vr.name}[{self._gen_expr(node.args[1])}], {val})"
        idx = self._tensor_index(vr, node.args[1])
        if vr.nbuffs > 1:
            self.split_atomics.setdefault(vr.name, set()).add(op)
            return f"{vr.name}_Atomic{_op_suffix(op)}({idx}, {val})"
        return f"{ATOMIC_OPS[op]}(&{vr.name}[{idx}], {val})"
