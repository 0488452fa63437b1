"""Parsing of #pysl:vars blocks into Groups and Vars."""

import ast
import re
from logging import getLogger
from typing import List, Optional

from .errors import StructuralError
from .extract import KEY
from .state import ExtractedFile, Group, State, TensorKind, Var

logger = getLogger(__name__)

_DECL = re.compile(r"^([A-Za-z_]\w*)\s*:\s*(.+)$")
_VAR_ANNOT = re.compile(r"^([\w.]+\.)?(NDArray|list|List)\[")

_TENSOR_KINDS = {
    "float32": TensorKind.FLOAT32,
    "int32": TensorKind.INT32,
    "uint32": TensorKind.UINT32,
}

_SCALAR_TYPES = {
    "float": "f32", "int": "i32", "bool": "bool",
    "f32": "f32", "i32": "i32", "u32": "u32",
    "float32": "f32", "int32": "i32", "uint32": "u32",
}


def _dotted(node: ast.expr) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return _dotted(node.value) + "." + node.attr
    return ""


def parse_var_type(vr: Var, annotation: str):
    """Fill in the type fields of vr from its annotation text.

    NDArray[np.float32] and friends are tensors; list[T] is an array of T.
    """
    try:
        node = ast.parse(annotation, mode="eval").body
    except SyntaxError:
        raise StructuralError(f"variable {vr.name!r}: cannot parse type {annotation!r}")
    vr.type = annotation
    if isinstance(node, ast.Subscript):
        base = _dotted(node.value).split(".")[-1]
        arg = _dotted(node.slice).split(".")[-1]
        if base == "NDArray":
            kind = _TENSOR_KINDS.get(arg)
            if kind is None:
                raise StructuralError(
                    f"variable {vr.name!r} type is not supported: {annotation!r}")
            vr.tensor = True
            vr.tensor_kind = kind
            return
        if base in ("list", "List"):
            vr.elem_type = _SCALAR_TYPES.get(arg, arg)
            if not vr.elem_type:
                raise StructuralError(
                    f"variable {vr.name!r} element type is not supported: {annotation!r}")
            return
    raise StructuralError(f"variable {vr.name!r} type is not supported: {annotation!r}")


def _directive_int(name: str, text: str, where: str) -> int:
    try:
        val = int(text.split()[0].replace("_", ""))
    except (IndexError, ValueError):
        raise StructuralError(f"{where}: {name} directive needs an integer")
    if val < 1:
        raise StructuralError(f"{where}: {name} must be at least 1")
    return val


def parse_vars(st: State, ef: ExtractedFile) -> List[Var]:
    """Add the variables declared in every vars block of ef to their System."""
    added: List[Var] = []
    lines = ef.lines
    li = 0
    while li < len(lines):
        tln = lines[li].strip()
        if tln.startswith(KEY + "vars"):
            sysnm = tln[len(KEY + "vars"):].strip()
            li = _parse_block(st, ef, li + 1, st.system(sysnm), added)
            continue
        li += 1
    return added


def _parse_block(st, ef, li, sy, added) -> int:
    lines = ef.lines
    doc: List[str] = []
    group: Optional[Group] = sy.groups[-1] if sy.groups else None
    dims = 1
    read_only = read_or_write = False
    nbuffs = 1
    max_elements = None

    while li < len(lines):
        ln = lines[li]
        tln = ln.strip()
        where = f"{ef.name}:{li + 1}"
        if tln.startswith(KEY):
            dr = tln[len(KEY):]
            if dr.startswith("group"):
                flds = dr[len("group"):].split()
                if not flds:
                    raise StructuralError(f"{where}: group directive needs a name")
                group = Group(name=flds[0], doc=" ".join(doc),
                              uniform="uniform" in flds[1:])
                sy.groups.append(group)
                doc = []
            elif dr.startswith("dims"):
                dims = _directive_int("dims", dr[len("dims"):], where)
            elif dr.startswith("read-only"):
                read_only = True
            elif dr.startswith("read-or-write"):
                read_or_write = True
            elif dr.startswith("nbuffs"):
                nbuffs = _directive_int("nbuffs", dr[len("nbuffs"):], where)
            elif dr.startswith("size"):
                max_elements = _directive_int("size", dr[len("size"):], where)
            elif dr.startswith("vars"):
                break
            else:
                raise StructuralError(f"{where}: unknown directive in vars block: {tln}")
        elif tln.startswith("#"):
            doc.append(tln.lstrip("#").strip())
        elif not tln:
            pass
        elif not ln[0].isspace() and _DECL.match(tln):
            name, annot = _DECL.match(tln).groups()
            annot = annot.split("=")[0].strip()
            if not _VAR_ANNOT.match(annot):
                break
            vr = Var(name=name, doc=" ".join(doc), read_only=read_only,
                     read_or_write=read_or_write, tensor_dims=dims, nbuffs=nbuffs,
                     max_elements=max_elements)
            parse_var_type(vr, annot)
            if group is None:
                group = Group()
                sy.groups.append(group)
            if st.global_var(name) is not None:
                raise StructuralError(f"{where}: variable {name!r} declared twice")
            group.vars.append(vr)
            added.append(vr)
            logger.debug("Added var: %s type: %s group: %s", name, annot, group.name)
            doc = []
            dims, nbuffs, max_elements = 1, 1, None
            read_only = read_or_write = False
        else:
            break
        li += 1
    return li
