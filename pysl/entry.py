"""pysl: CLI entry point.

Translates the #pysl: annotated parts of Python files into one WGSL compute
shader per kernel. Output modes:
  wgsl    write <output>/<Kernel>.wgsl files (default)
  ast     dump the Python AST of the extracted code
  graph   print the call graph of the extracted functions
"""

import ast
import logging
import os
import sys

from .callgraph import FuncGraph
from .codegen_wgsl import WGSLTranslator
from .config import Config
from .errors import OutputError, PyslError
from .extract import Extractor
from .layout import vars_added
from .state import SourceFile, State
from .vars import parse_vars

DEMO_PROGRAM = """\
import numpy as np
from numpy.typing import NDArray

from pysl import atomic
from pysl.sltype import u32

#pysl:start
#pysl:vars
# Data holds the values being summed
#pysl:dims 2
Data: NDArray[np.float32]
#pysl:end

#pysl:start
def Compute(i: u32):  #pysl:kernel
    atomic.add(Data, (i, 0), Data[i, 1])
#pysl:end
"""


def _read_sources(paths):
    files = []
    for path in paths:
        with open(path) as f:
            files.append(SourceFile.from_text(os.path.basename(path), f.read()))
    return files


def _parse_imports(specs):
    """PKG=FILE arguments grouped by package."""
    imports = {}
    for spec in specs:
        pkg, _, path = spec.partition("=")
        if not pkg or not path:
            raise ValueError(f"--import expects PKG=FILE, got {spec!r}")
        with open(path) as f:
            imports.setdefault(pkg, []).append(
                SourceFile.from_text(os.path.basename(path), f.read()))
    return imports


def main(argv=None):
    import argparse
    defaults = Config()
    ap = argparse.ArgumentParser(description="Python to WGSL kernel compiler")
    ap.add_argument("files", nargs="*", help="annotated Python source files")
    ap.add_argument("--emit", choices=["wgsl", "ast", "graph"], default="wgsl",
                    help="Output mode (default: wgsl)")
    ap.add_argument("-o", "--output", default=defaults.output,
                    help=f"directory for kernel files (default: {defaults.output})")
    ap.add_argument("--exclude", default=defaults.exclude,
                    help="comma-separated function names never translated")
    ap.add_argument("--max-buffer-size", type=int, default=defaults.max_buffer_size,
                    help="bytes per storage buffer before a tensor is split")
    ap.add_argument("--max-storage-buffers", type=int, default=defaults.max_storage_buffers,
                    help="buffers per kernel before a warning is reported")
    ap.add_argument("--workgroup-size", type=int, default=defaults.workgroup_size)
    ap.add_argument("--import", dest="imports", action="append", default=[],
                    metavar="PKG=FILE", help="file of an imported package, repeatable")
    ap.add_argument("--keep", action="store_true", help="keep the imports/ directory")
    ap.add_argument("--no-validate", action="store_true",
                    help="do not run naga or tint on the generated kernels")
    ap.add_argument("--debug", action="store_true", help="verbose debug logging")
    ap.add_argument("--demo", action="store_true", help="Translate the built-in demo program")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    # ── read sources ─────────────────────────────────────────────────────
    try:
        if args.demo:
            files = [SourceFile.from_text("demo.py", DEMO_PROGRAM)]
        elif args.files:
            files = _read_sources(args.files)
        else:
            ap.print_help()
            return 1
        imports = _parse_imports(args.imports)
    except (OSError, ValueError) as e:
        print(f"pysl: {e}", file=sys.stderr)
        return 1

    cfg = Config(
        output=args.output,
        exclude=args.exclude,
        max_buffer_size=args.max_buffer_size,
        max_storage_buffers=args.max_storage_buffers,
        workgroup_size=args.workgroup_size,
        debug=args.debug,
        keep=args.keep,
        validate=not args.no_validate,
        import_packages=list(imports),
    )
    st = State(cfg)

    # ── dispatch ─────────────────────────────────────────────────────────
    if args.emit in ("ast", "graph"):
        ex = Extractor(st)
        extracted = []
        try:
            for sf in files:
                ef = ex.extract(sf.name, sf.lines)
                extracted.append((ef, ast.parse(ef.text, filename=ef.name)))
        except (PyslError, SyntaxError) as e:
            print(f"pysl: {e}", file=sys.stderr)
            return 1
        if args.emit == "ast":
            for ef, tree in extracted:
                print(f"# {ef.name}")
                print(ast.dump(tree, indent=2))
            return 0
        graph = FuncGraph(st.diagnostics)
        tr = WGSLTranslator(st, graph)
        try:
            for ef, _ in extracted:
                if ef.has_vars:
                    parse_vars(st, ef)
            vars_added(st)
            tr.prepare(extracted)
            for ef, tree in extracted:
                tr.build_graph(ef, tree)
        except PyslError as e:
            print(f"pysl: {e}", file=sys.stderr)
            return 1
        graph.resolve_signatures()
        print(graph.describe())
        return 0

    try:
        report = st.run(files, imports)
    except OutputError as e:
        print(f"pysl: {e}", file=sys.stderr)
        return 2
    for path in report.files:
        print(path)
    return 1 if st.diagnostics.errors else 0


if __name__ == "__main__":
    sys.exit(main())
