"""Base code generator: shared type inference and AST-to-WGSL codegen."""

import ast
from typing import Dict, List, Optional

# Python and numpy scalar names to WGSL types
TYPE_NAMES = {
    "float": "f32", "int": "i32", "bool": "bool",
    "f32": "f32", "i32": "i32", "u32": "u32",
    "float32": "f32", "int32": "i32", "uint32": "u32",
    "Uint32Vec2": "vec2<u32>", "Uint32Vec3": "vec3<u32>", "Uint32Vec4": "vec4<u32>",
    "Int32Vec2": "vec2<i32>", "Int32Vec3": "vec3<i32>", "Int32Vec4": "vec4<i32>",
    "Float32Vec2": "vec2<f32>", "Float32Vec3": "vec3<f32>", "Float32Vec4": "vec4<f32>",
}

# identifiers that are reserved in WGSL but fine as Python locals
RESERVED = {
    "self", "this", "type", "target", "sample", "filter", "module", "ref",
    "override", "const", "var", "let", "fn", "loop", "struct", "switch",
    "case", "default", "bitcast", "discard", "alias", "array", "bool",
    "f32", "i32", "u32", "vec2", "vec3", "vec4", "ptr", "mat2x2", "mat3x3",
    "mat4x4", "storage", "uniform", "workgroup", "private", "function",
    "enable", "requires", "texture", "sampler", "atomic", "diagnostic",
}


def vector_component(typ: str) -> Optional[str]:
    if typ.startswith("vec") and "<" in typ:
        return typ[typ.index("<") + 1:-1]
    return None


class BaseCodeGenerator:
    """Type inference and statement/expression codegen for the Python
    subset: if/elif/else, for-range, while, assignments, subscripts."""

    INT = "i32"
    UINT = "u32"
    FLOAT = "f32"
    BOOL = "bool"

    def __init__(self):
        self.lines: List[str] = []
        self.indent = 0
        self.global_types: Dict[str, str] = {}
        self.func_param_types: Dict[str, Dict[str, str]] = {}
        self.func_return_types: Dict[str, str] = {}
        self.func_local_types: Dict[str, Dict[str, str]] = {}
        self.annotated_params: Dict[str, set] = {}
        self.struct_fields: Dict[str, Dict[str, str]] = {}
        self._current_func: Optional[str] = None
        self._declared_vars: set = set()

    # ── output helpers ───────────────────────────────────────────────────

    def _emit(self, line: str):
        self.lines.append("    " * self.indent + line)

    def _local_name(self, name: str) -> str:
        return name + "_" if name in RESERVED else name

    # ── variable type bookkeeping ────────────────────────────────────────

    def _type_of_var(self, name: str) -> str:
        if self._current_func:
            ft = self.func_param_types.get(self._current_func, {})
            if name in ft:
                return ft[name]
            lt = self.func_local_types.get(self._current_func, {})
            if name in lt:
                return lt[name]
        return self.global_types.get(name, self.INT)

    def _set_var_type(self, name: str, typ: str):
        if self._current_func:
            locs = self.func_local_types.setdefault(self._current_func, {})
            locs[name] = self._merge_types(locs[name], typ) if name in locs else typ
        else:
            self.global_types[name] = typ

    def _merge_types(self, a: str, b: str) -> str:
        if a == self.FLOAT or b == self.FLOAT:
            if a in (self.INT, self.UINT, self.FLOAT) and b in (self.INT, self.UINT, self.FLOAT):
                return self.FLOAT
        if a == b:
            return a
        if {a, b} == {self.INT, self.UINT}:
            return self.UINT
        return a

    def _annotation_type(self, node: Optional[ast.expr]) -> Optional[str]:
        """WGSL type of an annotation; None for a missing or None annotation."""
        if node is None:
            return None
        if isinstance(node, ast.Constant):
            if node.value is None:
                return None
            if isinstance(node.value, str):
                return TYPE_NAMES.get(node.value, node.value)
        if isinstance(node, ast.Name):
            return TYPE_NAMES.get(node.id, node.id)
        if isinstance(node, ast.Attribute):
            return TYPE_NAMES.get(node.attr, node.attr)
        return None

    # ── type inference: expressions ──────────────────────────────────────

    def _infer_expr_type(self, node: ast.expr) -> str:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool):
                return self.BOOL
            return self.FLOAT if isinstance(node.value, float) else self.INT

        if isinstance(node, ast.Name):
            return self._type_of_var(node.id)

        if isinstance(node, ast.BinOp):
            lt = self._infer_expr_type(node.left)
            rt = self._infer_expr_type(node.right)
            if isinstance(node.op, ast.Div):
                return self.FLOAT
            return self._merge_types(lt, rt)

        if isinstance(node, ast.UnaryOp):
            if isinstance(node.op, ast.Not):
                return self.BOOL
            return self._infer_expr_type(node.operand)

        if isinstance(node, ast.IfExp):
            return self._merge_types(
                self._infer_expr_type(node.body),
                self._infer_expr_type(node.orelse),
            )

        if isinstance(node, (ast.Compare, ast.BoolOp)):
            return self.BOOL

        if isinstance(node, ast.Call):
            if isinstance(node.func, ast.Name):
                fname = node.func.id
                if fname in TYPE_NAMES:
                    return TYPE_NAMES[fname]
                if fname in self.struct_fields:
                    return fname
                if fname in self.func_return_types:
                    return self.func_return_types[fname]
                if fname in ("abs", "min", "max") and node.args:
                    return self._infer_expr_type(node.args[0])
            return self.INT

        if isinstance(node, ast.Attribute):
            base = self._infer_expr_type(node.value)
            if base in self.struct_fields:
                return self.struct_fields[base].get(node.attr, self.INT)
            comp = vector_component(base)
            if comp:
                return comp
            return self.INT

        if isinstance(node, ast.Subscript):
            if isinstance(node.value, ast.Name):
                return self._type_of_var(node.value.id)
            return self.INT

        return self.INT

    # ── type inference: full-tree pass ───────────────────────────────────

    def _infer_types(self, tree: ast.Module):
        for node in tree.body:
            self._infer_stmt_types(node)

    def _infer_function_types(self, node: ast.FunctionDef, key: str,
                              self_type: Optional[str] = None):
        old_func = self._current_func
        self._current_func = key
        params = {}
        annotated = set()
        for i, a in enumerate(node.args.args):
            typ = self._annotation_type(a.annotation)
            if typ is None and i == 0 and self_type:
                typ = self_type
            if typ is not None:
                annotated.add(a.arg)
            params[a.arg] = typ or self.func_param_types.get(key, {}).get(a.arg, self.INT)
        self.func_param_types[key] = params
        self.annotated_params[key] = annotated
        self.func_local_types[key] = {}
        for s in node.body:
            self._infer_stmt_types(s)
        ret = self._annotation_type(node.returns)
        if ret is None and node.returns is None and self._has_value_return(node.body):
            ret = self._infer_return_type(node.body)
        if ret is not None:
            self.func_return_types[key] = ret
        self._current_func = old_func

    def _infer_stmt_types(self, node: ast.stmt):
        if isinstance(node, ast.Assign):
            typ = self._infer_expr_type(node.value)
            for target in node.targets:
                if isinstance(target, ast.Name):
                    self._set_var_type(target.id, typ)

        elif isinstance(node, ast.AnnAssign):
            if isinstance(node.target, ast.Name):
                typ = self._annotation_type(node.annotation)
                if typ is None and node.value is not None:
                    typ = self._infer_expr_type(node.value)
                if typ is not None:
                    if self._current_func:
                        self.func_local_types.setdefault(self._current_func, {})[node.target.id] = typ
                    else:
                        self.global_types[node.target.id] = typ

        elif isinstance(node, ast.AugAssign):
            if isinstance(node.target, ast.Name):
                existing = self._type_of_var(node.target.id)
                rhs = self._infer_expr_type(node.value)
                if isinstance(node.op, ast.Div):
                    rhs = self.FLOAT
                self._set_var_type(node.target.id, self._merge_types(existing, rhs))

        elif isinstance(node, ast.FunctionDef):
            self._infer_function_types(node, node.name)

        elif isinstance(node, ast.If):
            for s in node.body + node.orelse:
                self._infer_stmt_types(s)

        elif isinstance(node, ast.While):
            for s in node.body:
                self._infer_stmt_types(s)

        elif isinstance(node, ast.For):
            if isinstance(node.target, ast.Name):
                self._set_var_type(node.target.id, self._range_type(node.iter))
            for s in node.body:
                self._infer_stmt_types(s)

    def _range_type(self, node: ast.expr) -> str:
        typ = self.INT
        if isinstance(node, ast.Call):
            for a in node.args:
                typ = self._merge_types(typ, self._infer_expr_type(a))
        return typ

    def _has_value_return(self, body: List[ast.stmt]) -> bool:
        for stmt in body:
            for node in ast.walk(stmt):
                if isinstance(node, ast.Return) and node.value is not None:
                    return True
        return False

    def _infer_return_type(self, body: List[ast.stmt]) -> Optional[str]:
        ret = None
        for node in body:
            if isinstance(node, ast.Return) and node.value:
                typ = self._infer_expr_type(node.value)
                ret = typ if ret is None else self._merge_types(ret, typ)
            elif isinstance(node, ast.If):
                for sub in (node.body, node.orelse):
                    typ = self._infer_return_type(sub)
                    if typ is not None:
                        ret = typ if ret is None else self._merge_types(ret, typ)
            elif isinstance(node, (ast.While, ast.For)):
                typ = self._infer_return_type(node.body)
                if typ is not None:
                    ret = typ if ret is None else self._merge_types(ret, typ)
        return ret

    def _refine_param_types(self, tree: ast.Module):
        """Unannotated parameters take the merged types of call arguments."""
        for node in ast.walk(tree):
            if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
                fname = node.func.id
                if fname in self.func_param_types:
                    ptypes = self.func_param_types[fname]
                    annotated = self.annotated_params.get(fname, set())
                    param_names = list(ptypes.keys())
                    for i, arg in enumerate(node.args):
                        if i < len(param_names) and param_names[i] not in annotated:
                            arg_type = self._infer_expr_type(arg)
                            ptypes[param_names[i]] = self._merge_types(
                                ptypes[param_names[i]], arg_type
                            )

    # ── statement codegen ────────────────────────────────────────────────

    def _gen_body(self, body: List[ast.stmt]):
        self.indent += 1
        for s in body:
            self._gen_stmt(s)
        self.indent -= 1

    def _gen_stmt(self, node: ast.stmt):
        if isinstance(node, ast.Assign):
            if len(node.targets) != 1:
                self._unsupported(node, "chained assignment")
                return
            self._gen_assign(node.targets[0], node.value)

        elif isinstance(node, ast.AnnAssign):
            self._gen_ann_assign(node)

        elif isinstance(node, ast.AugAssign):
            self._gen_aug_assign(node)

        elif isinstance(node, ast.Expr):
            if isinstance(node.value, ast.Constant) and isinstance(node.value.value, str):
                return  # docstring
            self._emit(f"{self._gen_expr(node.value)};")

        elif isinstance(node, ast.If):
            self._gen_if(node)

        elif isinstance(node, ast.While):
            self._emit(f"while ({self._gen_expr(node.test)}) {{")
            self._gen_body(node.body)
            self._emit("}")

        elif isinstance(node, ast.For):
            self._gen_for(node)

        elif isinstance(node, ast.Return):
            self._gen_return(node)

        elif isinstance(node, ast.Pass):
            self._emit("// pass")
        elif isinstance(node, ast.Break):
            self._emit("break;")
        elif isinstance(node, ast.Continue):
            self._emit("continue;")
        else:
            self._unsupported(node, type(node).__name__)
            self._emit(f"// unsupported: {type(node).__name__}")

    def _gen_assign(self, target: ast.expr, value: ast.expr):
        if isinstance(target, ast.Name):
            name = self._local_name(target.id)
            if target.id in self._declared_vars:
                self._emit(f"{name} = {self._gen_expr(value)};")
                return
            self._declared_vars.add(target.id)
            if self._is_literal(value):
                vtype = self._type_of_var(target.id)
                self._emit(f"var {name}: {vtype} = {self._gen_typed(value, vtype)};")
            else:
                self._emit(f"var {name} = {self._gen_expr(value)};")
        elif isinstance(target, (ast.Subscript, ast.Attribute)):
            self._emit(f"{self._gen_target(target)} = {self._gen_expr(value)};")
        else:
            self._unsupported(target, "assignment target " + type(target).__name__)

    def _gen_ann_assign(self, node: ast.AnnAssign):
        if not isinstance(node.target, ast.Name):
            if node.value is not None:
                self._gen_assign(node.target, node.value)
            return
        vtype = self._annotation_type(node.annotation) or self._type_of_var(node.target.id)
        name = self._local_name(node.target.id)
        if node.target.id in self._declared_vars:
            if node.value is not None:
                self._emit(f"{name} = {self._gen_typed(node.value, vtype)};")
            return
        self._declared_vars.add(node.target.id)
        if node.value is None:
            self._emit(f"var {name}: {vtype};")
        else:
            self._emit(f"var {name}: {vtype} = {self._gen_typed(node.value, vtype)};")

    def _gen_aug_assign(self, node: ast.AugAssign):
        target = self._gen_target(node.target)
        if isinstance(node.op, (ast.Pow, ast.FloorDiv, ast.Div, ast.Mod)):
            binop = ast.BinOp(left=node.target, op=node.op, right=node.value)
            self._emit(f"{target} = {self._gen_binop(binop)};")
            return
        self._emit(
            f"{target} {self._op_symbol(node.op)}= {self._gen_expr(node.value)};"
        )

    def _gen_return(self, node: ast.Return):
        if node.value:
            ret = self.func_return_types.get(self._current_func)
            self._emit(f"return {self._gen_typed(node.value, ret)};")
        else:
            self._emit("return;")

    def _is_literal(self, node: ast.expr) -> bool:
        if isinstance(node, ast.Constant):
            return isinstance(node.value, (bool, int, float))
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
            return self._is_literal(node.operand)
        return False

    def _gen_typed(self, node: ast.expr, typ: Optional[str]) -> str:
        """Numeric literals written in the form the target type expects."""
        if typ == self.FLOAT and self._is_literal(node):
            val = node if isinstance(node, ast.Constant) else node.operand
            if isinstance(val.value, int) and not isinstance(val.value, bool):
                sign = "-" if val is not node else ""
                return f"{sign}{float(val.value)!r}"
        if typ == self.UINT and isinstance(node, ast.Constant) \
                and isinstance(node.value, int) and not isinstance(node.value, bool):
            return f"{node.value}u"
        return self._gen_expr(node)

    # ── if / elif / else ─────────────────────────────────────────────────

    def _gen_if(self, node: ast.If):
        self._emit(f"if ({self._gen_expr(node.test)}) {{")
        self._gen_body(node.body)

        if not node.orelse:
            self._emit("}")
            return

        if len(node.orelse) == 1 and isinstance(node.orelse[0], ast.If):
            self._gen_elif_chain(node.orelse[0])
            self._emit("}")
        else:
            self._emit("} else {")
            self._gen_body(node.orelse)
            self._emit("}")

    def _gen_elif_chain(self, node: ast.If):
        self._emit(f"}} else if ({self._gen_expr(node.test)}) {{")
        self._gen_body(node.body)

        if not node.orelse:
            return
        if len(node.orelse) == 1 and isinstance(node.orelse[0], ast.If):
            self._gen_elif_chain(node.orelse[0])
        else:
            self._emit("} else {")
            self._gen_body(node.orelse)

    # ── for-range ────────────────────────────────────────────────────────

    def _gen_for(self, node: ast.For):
        target = self._gen_target(node.target)
        if (isinstance(node.iter, ast.Call)
                and isinstance(node.iter.func, ast.Name)
                and node.iter.func.id == "range"
                and 1 <= len(node.iter.args) <= 3):
            args = node.iter.args
            loop_type = self._for_loop_type(node)
            step_negative = False
            if len(args) == 1:
                start, end, step = "0", self._gen_expr(args[0]), "1"
            elif len(args) == 2:
                start, end, step = self._gen_expr(args[0]), self._gen_expr(args[1]), "1"
            else:
                start = self._gen_expr(args[0])
                end = self._gen_expr(args[1])
                step = self._gen_expr(args[2])
                step_negative = self._is_negative_step(args[2])
            if loop_type == self.UINT:
                start = start + "u" if start.isdigit() else start
                step = step + "u" if step.isdigit() else step

            cmp = ">" if step_negative else "<"
            if isinstance(node.target, ast.Name):
                self._declared_vars.add(node.target.id)
            self._emit(
                f"for (var {target}: {loop_type} = {start}; "
                f"{target} {cmp} {end}; {target} += {step}) {{"
            )
        else:
            self._unsupported(node, "for loop over anything but range()")
            self._emit("/* unsupported for-iter */ {")

        self._gen_body(node.body)
        self._emit("}")

    def _for_loop_type(self, node: ast.For) -> str:
        return self._range_type(node.iter)

    def _is_negative_step(self, node: ast.expr) -> bool:
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return node.value < 0
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
            return isinstance(node.operand, ast.Constant)
        return False

    # ── expression codegen ───────────────────────────────────────────────

    def _gen_expr(self, node: ast.expr) -> str:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool):
                return "true" if node.value else "false"
            if isinstance(node.value, float):
                return repr(node.value)
            if isinstance(node.value, int):
                if node.value > 0x7FFFFFFF:
                    return f"{node.value}u"
                return repr(node.value)
            self._unsupported(node, f"constant {node.value!r}")
            return f"/* unsupported: {type(node.value).__name__} constant */"

        if isinstance(node, ast.Name):
            return self._gen_name(node)

        if isinstance(node, ast.BinOp):
            return self._gen_binop(node)

        if isinstance(node, ast.UnaryOp):
            operand = self._gen_expr(node.operand)
            if isinstance(node.op, ast.USub):
                return f"(-{operand})"
            if isinstance(node.op, ast.UAdd):
                return operand
            if isinstance(node.op, ast.Not):
                return f"(!{operand})"
            if isinstance(node.op, ast.Invert):
                return f"(~{operand})"
            return operand

        if isinstance(node, ast.Compare):
            parts = []
            left = node.left
            for op, comp in zip(node.ops, node.comparators):
                sym = self._cmp_symbol(op)
                if sym == "?":
                    self._unsupported(node, f"comparison {type(op).__name__}")
                parts.append(f"({self._gen_expr(left)} {sym} {self._gen_expr(comp)})")
                left = comp
            if len(parts) == 1:
                return parts[0]
            return "(" + " && ".join(parts) + ")"

        if isinstance(node, ast.BoolOp):
            joiner = " && " if isinstance(node.op, ast.And) else " || "
            return "(" + joiner.join(self._gen_expr(v) for v in node.values) + ")"

        if isinstance(node, ast.Call):
            return self._gen_call(node)

        if isinstance(node, ast.IfExp):
            return (f"select({self._gen_expr(node.orelse)}, "
                    f"{self._gen_expr(node.body)}, {self._gen_expr(node.test)})")

        if isinstance(node, ast.Subscript):
            return f"{self._gen_expr(node.value)}[{self._gen_expr(node.slice)}]"

        if isinstance(node, ast.Attribute):
            return f"{self._gen_expr(node.value)}.{node.attr}"

        self._unsupported(node, type(node).__name__)
        return f"/* unsupported: {type(node).__name__} */"

    def _gen_name(self, node: ast.Name) -> str:
        if node.id in self._declared_vars:
            return self._local_name(node.id)
        return node.id

    def _gen_binop(self, node: ast.BinOp) -> str:
        left = self._gen_expr(node.left)
        right = self._gen_expr(node.right)
        lt = self._infer_expr_type(node.left)
        rt = self._infer_expr_type(node.right)
        is_float = self.FLOAT in (lt, rt)
        if is_float and not isinstance(node.op, (ast.LShift, ast.RShift)):
            # WGSL has no implicit int to float conversion of variables
            if lt in (self.INT, self.UINT) and not self._is_literal(node.left):
                left = f"f32({left})"
            if rt in (self.INT, self.UINT) and not self._is_literal(node.right):
                right = f"f32({right})"

        if isinstance(node.op, ast.Pow):
            if is_float:
                return f"pow({left}, {right})"
            return f"{lt}(pow(f32({left}), f32({right})))"

        if isinstance(node.op, ast.Div) and not is_float:
            return f"(f32({left}) / f32({right}))"

        if isinstance(node.op, ast.FloorDiv) and is_float:
            return f"floor({left} / {right})"

        return f"({left} {self._op_symbol(node.op)} {right})"

    def _gen_call(self, node: ast.Call) -> str:
        func = self._gen_expr(node.func)
        args = ", ".join(self._gen_expr(a) for a in node.args)
        return f"{func}({args})"

    # ── function codegen ─────────────────────────────────────────────────

    def _hoisted_locals(self, body: List[ast.stmt]) -> List[str]:
        """Locals first assigned inside a nested block.

        Python scopes locals to the function, WGSL to the block, so these
        are declared at the top of the function.
        """
        seen = set(self._declared_vars)
        hoisted: List[str] = []

        def targets(stmt):
            if isinstance(stmt, ast.Assign):
                return [t for t in stmt.targets if isinstance(t, ast.Name)]
            if isinstance(stmt, (ast.AnnAssign, ast.AugAssign)) and isinstance(stmt.target, ast.Name):
                return [stmt.target]
            return []

        for stmt in body:
            if isinstance(stmt, (ast.If, ast.For, ast.While)):
                for sub in ast.walk(stmt):
                    for t in targets(sub):
                        if t.id not in seen:
                            seen.add(t.id)
                            hoisted.append(t.id)
            else:
                for t in targets(stmt):
                    seen.add(t.id)
        return hoisted

    def _gen_function(self, node: ast.FunctionDef):
        old_func = self._current_func
        self._current_func = node.name
        old_declared = self._declared_vars
        self._declared_vars = set()

        param_types = self.func_param_types.get(node.name, {})
        params = ", ".join(
            f"{self._local_name(a.arg)}: {param_types.get(a.arg, self.INT)}"
            for a in node.args.args
        )
        for a in node.args.args:
            self._declared_vars.add(a.arg)
        ret = self.func_return_types.get(node.name)
        ret_str = f" -> {ret}" if ret else ""

        self._emit(f"fn {node.name}({params}){ret_str} {{")
        self.indent += 1
        for name in self._hoisted_locals(node.body):
            self._declared_vars.add(name)
            self._emit(f"var {self._local_name(name)}: {self._type_of_var(name)};")
        for s in node.body:
            self._gen_stmt(s)
        self.indent -= 1
        self._emit("}")
        self._emit("")

        self._current_func = old_func
        self._declared_vars = old_declared

    # ── symbol helpers ───────────────────────────────────────────────────

    def _unsupported(self, node: ast.AST, what: str):
        pass

    def _gen_target(self, target: ast.expr) -> str:
        if isinstance(target, ast.Name):
            return self._local_name(target.id)
        if isinstance(target, (ast.Subscript, ast.Attribute)):
            return self._gen_expr(target)
        return "?"

    _OP_SYMBOLS = {
        ast.Add: "+", ast.Sub: "-", ast.Mult: "*", ast.Div: "/",
        ast.FloorDiv: "/", ast.Mod: "%",
        ast.LShift: "<<", ast.RShift: ">>",
        ast.BitAnd: "&", ast.BitOr: "|", ast.BitXor: "^",
    }

    _CMP_SYMBOLS = {
        ast.Eq: "==", ast.NotEq: "!=",
        ast.Lt: "<", ast.LtE: "<=",
        ast.Gt: ">", ast.GtE: ">=",
    }

    def _op_symbol(self, op: ast.operator) -> str:
        return self._OP_SYMBOLS.get(type(op), "?")

    def _cmp_symbol(self, op: ast.cmpop) -> str:
        return self._CMP_SYMBOLS.get(type(op), "?")
