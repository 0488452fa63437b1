"""Annotation extractor: pulls #pysl: tagged regions out of Python files.

Directive detection is purely lexical: each stripped line is matched on the
"#pysl:" prefix. Nothing here needs a parse tree, except that kernel
declaration lines get their signature and trailing options split up.
"""

import re
from logging import getLogger
from typing import Dict, List, Tuple

from .errors import Kind, StructuralError
from .state import (ExtractedFile, Kernel, Region, RegionKind, SourceFile,
                    State)

logger = getLogger(__name__)

KEY = "#pysl:"
KERNEL = "#pysl:kernel"
READ_WRITE = "read-write:"

HEADER = [
    '# Code generated by "pysl"; DO NOT EDIT',
    "import math",
    "",
    "import numpy as np",
    "from numpy.typing import NDArray",
    "",
    "from pysl import atomic, slbool, slrand, sltype",
    "from pysl.sltype import f32, i32, u32",
    "",
]


class Extractor:
    """Extracts tagged regions from the lines of one file at a time."""

    def __init__(self, state: State):
        self.state = state

    def _package_patterns(self) -> List[re.Pattern]:
        return [re.compile(r"\b" + re.escape(pkg) + r"\.")
                for pkg in sorted(self.state.import_packages)]

    def extract(self, name: str, lines: List[str], package: str = "") -> ExtractedFile:
        """Return the tagged subsequence of lines, in order.

        Raises StructuralError for unbalanced region directives or a kernel
        declaration that cannot be parsed; nothing is registered in that case.
        """
        pkg_pats = self._package_patterns()
        out: List[str] = []
        regions: List[Region] = []
        kernels: List[Kernel] = []
        has_vars = False

        in_reg = False
        special = None
        outer_reg = False

        for li, ln in enumerate(lines):
            tln = ln.strip()
            is_key = tln.startswith(KEY)
            key = tln[len(KEY):] if is_key else ""

            if is_key and key.startswith("end"):
                if special is not None:
                    special.end = len(out)
                    regions.append(special)
                    special = None
                    in_reg = outer_reg
                elif in_reg:
                    in_reg = False
                else:
                    raise StructuralError(
                        f"{name}:{li + 1}: end directive without an open region")

            elif is_key and (key.startswith("wgsl") or key.startswith("nowgsl")):
                if special is not None:
                    raise StructuralError(
                        f"{name}:{li + 1}: {tln} inside an open {special.kind.value} region")
                kind = RegionKind.NOWGSL if key.startswith("nowgsl") else RegionKind.WGSL
                special = Region(kind, len(out), len(out))
                outer_reg = in_reg
                in_reg = True
                out.append(ln)  # keep the directive so the translator can see it

            elif special is not None and special.kind == RegionKind.WGSL:
                out.append(ln)

            elif in_reg and is_key and key.startswith("vars"):
                has_vars = True
                out.append(ln)

            elif in_reg and is_key and key.startswith("start"):
                raise StructuralError(
                    f"{name}:{li + 1}: start directive inside an open region")

            elif in_reg:
                if "import" not in ln:
                    for pat in pkg_pats:
                        ln = pat.sub("", ln)
                if ln.startswith("def ") and KERNEL in ln:
                    kernels.append(self._parse_kernel(name, lines, li, ln))
                out.append(ln)

            elif is_key and key.startswith("start"):
                in_reg = True

        if in_reg or special is not None:
            raise StructuralError(f"{name}: region left open at end of file")

        for kn in kernels:
            self._add_kernel(kn)
        return ExtractedFile(name=name, lines=out, has_vars=has_vars,
                             regions=regions, package=package)

    def _parse_kernel(self, name: str, lines: List[str], li: int, ln: str) -> Kernel:
        pos = ln.rindex(KERNEL)
        flds = ln[pos + len(KERNEL):].split()
        rwvars: Dict[str, bool] = {}
        if flds and flds[-1].startswith(READ_WRITE):
            rwf = flds.pop()
            for vr in rwf[len(READ_WRITE):].split(","):
                if vr:
                    rwvars[vr] = True
        if len(flds) > 1:
            raise StructuralError(
                f"{name}:{li + 1}: unexpected kernel arguments: {' '.join(flds)!r}")
        sysnm = flds[0] if flds else ""

        fcall = ln[len("def "):pos]
        lp = fcall.find("(")
        rp = fcall.rfind(")")
        if lp < 0 or rp < lp:
            raise StructuralError(f"{name}:{li + 1}: cannot parse kernel signature")
        fnm = fcall[:lp].strip()
        if not fnm.isidentifier():
            raise StructuralError(f"{name}:{li + 1}: invalid kernel name {fnm!r}")
        args = fcall[lp + 1:rp].strip()

        funcode = ""
        for kl in lines[li + 1:]:
            if kl.strip() and not kl[0].isspace():
                break
            funcode += kl + "\n"

        return Kernel(name=fnm, args=args, func_code=funcode,
                      read_write_vars=rwvars, system=sysnm or "")

    def _add_kernel(self, kn: Kernel):
        sy = self.state.system(kn.system)
        kn.system = sy.name
        for other in self.state.systems.values():
            if kn.name in other.kernels:
                self.state.diagnostics.warning(
                    Kind.STRUCTURAL,
                    f"kernel {kn.name!r} redeclared; previous in system {other.name!r}",
                    kernel=kn.name)
        sy.kernels[kn.name] = kn
        logger.debug("Added kernel: %s args: %s system: %s", kn.name, kn.args, sy.name)


def append_header(lines: List[str]) -> List[str]:
    """Lines of the intermediate imports/ copy of an extracted file."""
    return HEADER + list(lines)


def extract_files(st: State, files: List[SourceFile],
                  imports: Dict[str, List[SourceFile]]) -> Tuple[int, int]:
    """Extract all project files and imported package files into st.

    Files declaring #pysl:vars are moved to st.vars_files so they are always
    processed first. Returns the number of files extracted and skipped.
    """
    for pkg in imports:
        st.import_packages[pkg] = True
    ex = Extractor(st)
    done = skipped = 0

    def do_file(fname, lines, package=""):
        nonlocal done, skipped
        try:
            ef = ex.extract(fname, lines, package)
        except StructuralError as err:
            st.diagnostics.error(Kind.STRUCTURAL, str(err), file=fname)
            skipped += 1
            return
        if not ef.lines:
            return
        if ef.has_vars:
            st.vars_files[fname] = ef
        else:
            st.files[fname] = ef
        done += 1

    for sf in files:
        do_file(sf.name, sf.lines)
    for pkg, pfiles in imports.items():
        for sf in pfiles:
            do_file(f"{pkg}-{sf.name}", sf.lines, pkg)
    return done, skipped
