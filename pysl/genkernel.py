"""WGSL kernel file assembly: binding header, entry point, helpers, bodies."""

import os
import re
from logging import getLogger
from typing import Dict, List, Set, Tuple

from .codegen_wgsl import ATOMIC_OPS
from .state import Kernel, State, System, Var

logger = getLogger(__name__)

BANNER = '// Code generated by "pysl"; DO NOT EDIT'

RUNTIME_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "runtime")

# runtime modules in the order they are appended, with what they need
RUNTIME_MODULES = [
    ("slbool", ()),
    ("sltype", ()),
    ("slrand", ("sltype",)),
]


def is_atomic(st: State, kn: Kernel, vr: Var) -> bool:
    return vr.name in kn.atomics and st.var_is_read_write(vr)


def access_mode(st: State, kn: Kernel, vr: Var, uniform: bool) -> str:
    """Address space and access mode of vr as seen by kernel kn."""
    if uniform and not vr.tensor:
        return "uniform"
    if vr.read_only or uniform:
        return "storage, read"
    prev = st.cur_kernel
    st.cur_kernel = kn
    try:
        rw = st.var_is_read_write(vr)
    finally:
        st.cur_kernel = prev
    return "storage, read_write" if rw else "storage, read"


def _var_decls(st: State, kn: Kernel, vr: Var, uniform: bool, group: int) -> List[str]:
    mode = access_mode(st, kn, vr, uniform)
    elem = vr.sl_type()
    if mode == "storage, read_write" and vr.name in kn.atomics:
        elem = f"atomic<{elem}>"
    arr = f"array<{elem}, 1>" if mode == "uniform" else f"array<{elem}>"
    lines = []
    for bi, bname in enumerate(vr.buffer_names()):
        lines.append(f"@group({group}) @binding({vr.binding + bi})")
        lines.append(f"var<{mode}> {bname}: {arr};")
    return lines


def gen_kernel_header(st: State, sy: System, kn: Kernel) -> List[str]:
    """Bindings of every var in the System, seen with kn's access modes."""
    lines = [BANNER, f"// kernel: {kn.name}", ""]
    if not sy.groups:
        lines.append("@group(0) @binding(0)")
        lines.append("var<storage, read> TensorStrides: array<u32>;")
    for gi, gp in enumerate(sy.groups):
        if gp.doc:
            lines.append("// " + gp.doc)
        if gi == 0:
            lines.append("@group(0) @binding(0)")
            lines.append("var<storage, read> TensorStrides: array<u32>;")
        for vr in gp.vars:
            if vr.doc:
                lines.append("// " + vr.doc)
            lines.extend(_var_decls(st, kn, vr, gp.uniform, gi))
    lines.append("")
    lines.append(f"@compute @workgroup_size({st.config.workgroup_size}, 1, 1)")
    lines.append("fn main(@builtin(global_invocation_id) idx: vec3<u32>) {")
    lines.append(f"    {kn.name}(idx.x);")
    lines.append("}")
    lines.append("")
    return lines


def gen_tensor_funcs(sy: System) -> List[str]:
    """Index helpers, one per (element type, dims) used by the System's tensors.

    Strides are u32 for every element type, so helpers of equal dims share
    one signature and are emitted once.
    """
    lines = []
    done: Set[str] = set()
    pairs: List[Tuple[str, int]] = []
    for vr in sy.all_vars():
        if vr.tensor and (vr.sl_type(), vr.tensor_dims) not in pairs:
            pairs.append((vr.sl_type(), vr.tensor_dims))
    for _, nd in pairs:
        fn = f"Index{nd}D"
        if fn in done:
            continue
        done.add(fn)
        params = [f"s{d}: u32" for d in range(nd)] + [f"i{d}: u32" for d in range(nd)]
        terms = " + ".join(f"s{d} * i{d}" for d in range(nd))
        lines.append(f"fn {fn}({', '.join(params)}) -> u32 {{")
        lines.append(f"    return {terms};")
        lines.append("}")
        lines.append("")
    return lines


def _per_buffer(st: State, vr: Var) -> int:
    if vr.split is not None:
        return vr.split.per_buffer
    return st.config.max_buffer_size // vr.tensor_kind.itemsize


def gen_split_funcs(st: State, sy: System, kn: Kernel,
                    split_atomics: Dict[str, Set[str]]) -> List[str]:
    """Accessors routing a logical index of a split tensor to its buffer.

    Element ix lives in buffer ix / per_buffer at offset ix % per_buffer.
    """
    lines = []
    prev = st.cur_kernel
    st.cur_kernel = kn
    try:
        for vr in sy.all_vars():
            if not vr.tensor or vr.nbuffs <= 1:
                continue
            typ = vr.sl_type()
            per = _per_buffer(st, vr)
            names = vr.buffer_names()
            atomic = is_atomic(st, kn, vr)

            def branches(stmt):
                out = []
                for bi, bname in enumerate(names[:-1]):
                    out.append(f"    if (bi == {bi}u) {{ {stmt(bname)} }}")
                out.append(f"    {stmt(names[-1])}")
                return out

            prologue = [f"    let bi = ix / {per}u;", f"    let ii = ix % {per}u;"]

            if atomic:
                load = lambda b: f"return atomicLoad(&{b}[ii]);"
            else:
                load = lambda b: f"return {b}[ii];"
            lines.append(f"fn {vr.name}_Get(ix: u32) -> {typ} {{")
            lines.extend(prologue)
            lines.extend(branches(load))
            lines.append("}")
            lines.append("")

            if st.var_is_read_write(vr):
                if atomic:
                    store = lambda b: f"atomicStore(&{b}[ii], val); return;"
                else:
                    store = lambda b: f"{b}[ii] = val; return;"
                lines.append(f"fn {vr.name}_Set(val: {typ}, ix: u32) {{")
                lines.extend(prologue)
                lines.extend(branches(store))
                lines.append("}")
                lines.append("")

            for op in sorted(split_atomics.get(vr.name, ())):
                fname = ATOMIC_OPS[op]
                suffix = op.rstrip("_").capitalize()
                lines.append(f"fn {vr.name}_Atomic{suffix}(ix: u32, val: {typ}) -> {typ} {{")
                lines.extend(prologue)
                lines.extend(branches(lambda b: f"return {fname}(&{b}[ii], val);"))
                lines.append("}")
                lines.append("")
    finally:
        st.cur_kernel = prev
    return lines


def runtime_modules(body: str) -> List[str]:
    """Names of the runtime modules referenced by the translated text."""
    used = set()
    for name, needs in reversed(RUNTIME_MODULES):
        if name in used or re.search(r"\b" + name + r"_\w", body):
            used.add(name)
            used.update(needs)
    return [name for name, _ in RUNTIME_MODULES if name in used]


def read_runtime(name: str) -> List[str]:
    with open(os.path.join(RUNTIME_DIR, name + ".wgsl")) as f:
        return f.read().splitlines()


def gen_kernel(st: State, sy: System, kn: Kernel, bodies: List[Tuple[str, str]],
               split_atomics: Dict[str, Set[str]]) -> str:
    """Full text of the kernel file.

    bodies holds the translated text of each file, in processing order.
    """
    lines = gen_kernel_header(st, sy, kn)
    lines.extend(gen_tensor_funcs(sy))
    lines.extend(gen_split_funcs(st, sy, kn, split_atomics))
    body_text = []
    for fname, text in bodies:
        if not text.strip():
            continue
        body_text.append("")
        body_text.append(f'//////// import: "{fname}"')
        body_text.extend(text.rstrip().split("\n"))
    lines.extend(body_text)
    for name in runtime_modules("\n".join(body_text)):
        logger.debug("kernel %s: appending runtime module %s", kn.name, name)
        lines.append("")
        lines.append(f'//////// import: "{name}.wgsl"')
        lines.extend(read_runtime(name))
    return "\n".join(lines) + "\n"
