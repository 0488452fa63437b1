"""Scalar aliases, small vector types and 64-bit helpers for kernel code.

The vector types translate to WGSL vecN<T>; 64-bit values are carried as
Uint32Vec2 with x the low word and y the high word.
"""

from dataclasses import field, make_dataclass

import numpy as np

f32 = np.float32
i32 = np.int32
u32 = np.uint32

MASK32 = 0xFFFFFFFF


def _vector(name: str, dtype, n: int):
    comps = "xyzw"[:n]

    def __post_init__(self):
        for c in comps:
            setattr(self, c, dtype(getattr(self, c)))

    return make_dataclass(
        name,
        [(c, dtype, field(default=dtype(0))) for c in comps],
        namespace={"__post_init__": __post_init__},
    )


Uint32Vec2 = _vector("Uint32Vec2", np.uint32, 2)
Uint32Vec3 = _vector("Uint32Vec3", np.uint32, 3)
Uint32Vec4 = _vector("Uint32Vec4", np.uint32, 4)
Int32Vec2 = _vector("Int32Vec2", np.int32, 2)
Int32Vec3 = _vector("Int32Vec3", np.int32, 3)
Int32Vec4 = _vector("Int32Vec4", np.int32, 4)
Float32Vec2 = _vector("Float32Vec2", np.float32, 2)
Float32Vec3 = _vector("Float32Vec3", np.float32, 3)
Float32Vec4 = _vector("Float32Vec4", np.float32, 4)


def mul64(a, b) -> Uint32Vec2:
    """Full 64-bit product of two uint32 values."""
    p = int(a) * int(b)
    return Uint32Vec2(p & MASK32, (p >> 32) & MASK32)


def add64(a: Uint32Vec2, b) -> Uint32Vec2:
    lo = int(a.x) + int(b)
    hi = int(a.y) + (lo >> 32)
    return Uint32Vec2(lo & MASK32, hi & MASK32)


def uint32_to_float32(v) -> np.float32:
    """Uniform float in [0, 1) from the top 24 bits of v."""
    return np.float32(int(v) >> 8) / np.float32(16777216.0)


def uint32_to_float32_11(v) -> np.float32:
    """Uniform float in [-1, 1) from the top 24 bits of v."""
    return np.float32(int(v) >> 8) / np.float32(8388608.0) - np.float32(1.0)
