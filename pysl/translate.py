"""Pipeline driver: extract, lay out, build the call graph, emit kernels.

Each stage completes before the next starts. Kernel files are rendered in
memory and only written once every kernel has been translated.
"""

import ast
import contextlib
import glob
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from logging import getLogger
from typing import Dict, List, Optional, Set, Tuple

from .callgraph import FuncGraph
from .codegen_wgsl import WGSLTranslator
from .errors import Diagnostics, Kind, OutputError, StructuralError, UnknownVarError
from .extract import append_header, extract_files
from .genkernel import gen_kernel
from .layout import vars_added
from .state import ExtractedFile, SourceFile, State
from .vars import parse_vars

logger = getLogger(__name__)

VALIDATORS = {
    "naga": (["naga"], "https://github.com/gfx-rs/wgpu"),
    "tint": (["tint", "--validate", "--format", "wgsl", "-o", os.devnull],
             "https://dawn.googlesource.com/dawn/"),
}


@dataclass
class RunReport:
    # largest buffer count of any kernel, TensorStrides included
    max_buffers: int = 0

    # kernels over Config.max_storage_buffers
    n_over: int = 0

    files: List[str] = field(default_factory=list)
    diagnostics: Optional[Diagnostics] = None


def prepare_output(st: State):
    """Make the output and imports dirs."""
    cfg = st.config
    st.imports_dir = os.path.join(cfg.output, "imports")
    try:
        os.makedirs(cfg.output, exist_ok=True)
        os.makedirs(st.imports_dir, exist_ok=True)
    except OSError as err:
        raise OutputError(f"cannot prepare output directory {cfg.output!r}: {err}") from err


def discard(paths):
    for path in paths:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)


def stage_file(path: str, text: str) -> str:
    """Write text to a temporary file beside path and return its name."""
    dirname = os.path.dirname(path) or "."
    try:
        fd, tmp = tempfile.mkstemp(dir=dirname, suffix=".tmp")
    except OSError as err:
        raise OutputError(f"cannot write {path!r}: {err}") from err
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
    except OSError as err:
        discard([tmp])
        raise OutputError(f"cannot write {path!r}: {err}") from err
    return tmp


def write_files(outputs: Dict[str, str], stale: Optional[List[str]] = None):
    """Stage every file, then move them all into place and remove stale ones.

    Nothing is replaced until every file has been staged.
    """
    staged: List[Tuple[str, str]] = []
    try:
        for path, text in outputs.items():
            staged.append((stage_file(path, text), path))
        for tmp, path in staged:
            os.replace(tmp, path)
        discard(fn for fn in stale or [] if fn not in outputs)
    except OSError as err:
        raise OutputError(f"cannot write output files: {err}") from err
    finally:
        discard(tmp for tmp, _ in staged)


def write_imports(st: State):
    write_files({os.path.join(st.imports_dir, os.path.basename(ef.name)):
                 "\n".join(append_header(ef.lines)) + "\n" for ef in st.all_files()})


def parse_trees(st: State) -> List[Tuple[ExtractedFile, ast.Module]]:
    trees = []
    for ef in st.all_files():
        try:
            trees.append((ef, ast.parse(ef.text, filename=ef.name)))
        except SyntaxError as err:
            st.diagnostics.error(Kind.STRUCTURAL,
                                 f"extracted code does not parse: {err.msg} at line {err.lineno}",
                                 file=ef.name)
    return trees


def failed_defs(trees, failed) -> Set[str]:
    """Names of the top-level functions defined in failed files."""
    return {node.name for ef, tree in trees if ef.name in failed
            for node in tree.body if isinstance(node, ast.FunctionDef)}


def validate(st: State, path: str, notified: Dict[str, bool]):
    """Run every installed validator on path; missing ones get one notice per run."""
    for name, (cmd, url) in VALIDATORS.items():
        if shutil.which(cmd[0]) is None:
            if not notified.get(name):
                st.diagnostics.info(
                    Kind.ENVIRONMENT,
                    f"install the {name!r} WGSL compiler from {url} to get immediate validation")
                notified[name] = True
            continue
        try:
            res = subprocess.run(cmd + [os.path.abspath(path)], capture_output=True, text=True)
        except OSError as err:
            st.diagnostics.warning(Kind.ENVIRONMENT, f"{name} failed to run: {err}", file=path)
            continue
        out = (res.stdout + res.stderr).strip()
        logger.debug("%s output for: %s\n%s", name, path, out)
        if res.returncode != 0:
            st.diagnostics.warning(Kind.ENVIRONMENT, f"{name} rejected kernel: {out}", file=path)


def run(st: State, files: List[SourceFile],
        imports: Dict[str, List[SourceFile]]) -> RunReport:
    """Translate files (and imported package files) into one .wgsl per kernel."""
    cfg = st.config
    report = RunReport(diagnostics=st.diagnostics)
    prepare_output(st)

    done, skipped = extract_files(st, files, imports)
    logger.debug("extracted %d files, skipped %d", done, skipped)
    for ef in st.vars_files.values():
        try:
            parse_vars(st, ef)
        except StructuralError as err:
            st.diagnostics.error(Kind.STRUCTURAL, str(err), file=ef.name)
    vars_added(st)
    write_imports(st)

    trees = parse_trees(st)
    graph = FuncGraph(st.diagnostics)
    st.func_graph = graph
    tr = WGSLTranslator(st, graph)
    tr.prepare(trees)

    failed = set()
    for ef, tree in trees:
        try:
            tr.build_graph(ef, tree)
        except UnknownVarError as err:
            st.diagnostics.error(Kind.REFERENCE, str(err), file=ef.name)
            failed.add(ef.name)
    graph.resolve_signatures()
    logger.debug("call graph:\n%s", graph.describe())

    outputs: Dict[str, str] = {}
    for sysnm in sorted(st.systems):
        sy = st.systems[sysnm]
        for knm in sorted(sy.kernels):
            kn = sy.kernels[knm]
            if kn.name in failed_defs(trees, failed):
                logger.info("Skipping kernel %s: its file failed to translate", kn.name)
                continue
            res = graph.resolve(kn.name)
            if res is None:
                continue
            kn.atomics = res.atomic_vars
            kn.vars_used = res.touched_vars
            kn.n_buffers = res.total_buffer_count
            report.max_buffers = max(report.max_buffers, kn.n_buffers)
            logger.debug("kernel %s source:\n%s", kn.name, kn.func_code)
            logger.info("Translating kernel %s: %d buffers (atomic: %d)",
                        kn.name, kn.n_buffers, len(kn.atomics))
            if kn.n_buffers > cfg.max_storage_buffers:
                report.n_over += 1
                st.diagnostics.warning(
                    Kind.RESOURCE,
                    f"{kn.n_buffers} buffers exceeds maxStorageBuffersPerShaderStage "
                    f"of {cfg.max_storage_buffers}", kernel=kn.name)

            st.kernel_funcs = res.functions
            tr.begin_kernel(kn)
            bodies = []
            for ef, tree in trees:
                if ef.name in failed:
                    continue
                try:
                    bodies.append((ef.name, tr.translate_file(ef, tree)))
                except UnknownVarError as err:
                    st.diagnostics.error(Kind.REFERENCE, str(err), file=ef.name, kernel=kn.name)
                    failed.add(ef.name)
            text = gen_kernel(st, sy, kn, bodies, tr.split_atomics)
            path = os.path.join(cfg.output, kn.name + ".wgsl")
            kn.filename = path
            kn.lines = text.splitlines()
            outputs[path] = text
    st.cur_kernel = None
    st.kernel_funcs = None

    write_files(outputs, glob.glob(os.path.join(cfg.output, "*.wgsl")))
    report.files.extend(outputs)

    if cfg.validate:
        notified: Dict[str, bool] = {}
        for path in report.files:
            validate(st, path, notified)

    if not cfg.keep:
        shutil.rmtree(st.imports_dir, ignore_errors=True)

    logger.info("Maximum number of buffers used per kernel: %d", report.max_buffers)
    if report.n_over:
        logger.warning("%d kernels exceed maxStorageBuffersPerShaderStage of %d",
                       report.n_over, cfg.max_storage_buffers)
    return report
