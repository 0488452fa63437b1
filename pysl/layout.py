"""Variable layout: binding numbers, tensor indexes and buffer splitting."""

import math
from dataclasses import dataclass
from logging import getLogger
from typing import List, Tuple

import numpy as np

from .errors import Kind
from .state import State, Var

logger = getLogger(__name__)


@dataclass(frozen=True)
class BufferSplit:
    """How one logical tensor is spread across nbuffs physical buffers.

    Element i lives in buffer i // per_buffer at offset i % per_buffer;
    the generated WGSL accessors use exactly the same rule.
    """
    nbuffs: int
    per_buffer: int

    @classmethod
    def for_var(cls, vr: Var, max_buffer_size: int) -> "BufferSplit":
        return cls(vr.nbuffs, max_buffer_size // vr.tensor_kind.itemsize)

    @property
    def capacity(self) -> int:
        return self.nbuffs * self.per_buffer

    def locate(self, index: int) -> Tuple[int, int]:
        if index < 0 or index >= self.capacity:
            raise IndexError(f"index {index} outside split buffer of {self.capacity}")
        return index // self.per_buffer, index % self.per_buffer

    def split(self, values: np.ndarray) -> List[np.ndarray]:
        """Views of the flattened values, one per physical buffer."""
        flat = np.ravel(values)
        if flat.size > self.capacity:
            raise ValueError(f"{flat.size} elements exceed split capacity {self.capacity}")
        return [flat[b * self.per_buffer:(b + 1) * self.per_buffer]
                for b in range(self.nbuffs)]


def nbuffs_for(max_elements: int, itemsize: int, max_buffer_size: int) -> int:
    return max(1, math.ceil(max_elements * itemsize / max_buffer_size))


def vars_added(st: State):
    """Assign group, binding and tensor index to every var of every System.

    Must complete before any translation. The first group of each System
    reserves binding 0 for TensorStrides. Binding numbers depend only on
    declaration order, so running this again gives the same result.
    """
    cfg = st.config
    st.get_funcs = {}
    for sy in st.systems.values():
        rw_names = set()
        for kn in sy.kernels.values():
            rw_names.update(kn.read_write_vars)

        tensor_idx = 0
        for gi, gp in enumerate(sy.groups):
            vn = 1 if gi == 0 else 0
            for vr in gp.vars:
                vr.group = gi
                vr.binding = vn
                if vr.name in rw_names:
                    if vr.read_only:
                        st.diagnostics.warning(
                            Kind.REFERENCE,
                            f"variable {vr.name!r} is read-only but declared read-write by a kernel")
                    else:
                        vr.read_or_write = True
                if vr.tensor:
                    vr.tensor_index = tensor_idx
                    tensor_idx += 1
                    if vr.max_elements is not None and vr.nbuffs <= 1:
                        vr.nbuffs = nbuffs_for(vr.max_elements, vr.tensor_kind.itemsize,
                                               cfg.max_buffer_size)
                    if vr.nbuffs > 1:
                        vr.split = BufferSplit.for_var(vr, cfg.max_buffer_size)
                        vn += vr.nbuffs
                    else:
                        vr.split = None
                        vn += 1
                    continue
                st.get_funcs[vr.get_func()] = vr
                vn += 1
        sy.n_tensors = tensor_idx

        known = {vr.name for vr in sy.all_vars()}
        for kn in sy.kernels.values():
            for name in kn.read_write_vars:
                if name not in known:
                    st.diagnostics.error(
                        Kind.REFERENCE,
                        f"read-write variable {name!r} not found in system {sy.name!r}",
                        kernel=kn.name)
    for sy in st.systems.values():
        for gp in sy.groups:
            for vr in gp.vars:
                logger.debug("var %s: group %d binding %d nbuffs %d",
                             vr.name, vr.group, vr.binding, vr.nbuffs)
