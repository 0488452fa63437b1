"""Counter-based Philox2x32-10 random numbers, bit-identical to slrand.wgsl.

Every draw is a pure function of (counter, func_idx, key): counter is
usually an element index plus a per-step offset, func_idx separates the
draws made at different call sites, key is the seed.
"""

import numpy as np

from .sltype import (MASK32, Float32Vec2, Uint32Vec2, add64, mul64,
                     uint32_to_float32, uint32_to_float32_11)

M = 0xD256D193
W = 0x9E3779B9
ROUNDS = 10


def philox(counter: Uint32Vec2, key) -> Uint32Vec2:
    c0, c1 = int(counter.x), int(counter.y)
    k = int(key) & MASK32
    for _ in range(ROUNDS):
        p = mul64(c0, M)
        c0, c1 = int(p.y) ^ k ^ c1, int(p.x)
        k = (k + W) & MASK32
    return Uint32Vec2(c0, c1)


def uint32x2(counter: Uint32Vec2, func_idx, key) -> Uint32Vec2:
    return philox(add64(counter, func_idx), key)


def uint32(counter: Uint32Vec2, func_idx, key) -> np.uint32:
    return uint32x2(counter, func_idx, key).x


def uint32n(counter: Uint32Vec2, func_idx, key, n) -> np.uint32:
    """Uniform in [0, n)."""
    return np.uint32(int(uint32(counter, func_idx, key)) % int(n))


def float32(counter: Uint32Vec2, func_idx, key) -> np.float32:
    return uint32_to_float32(uint32(counter, func_idx, key))


def float32x2(counter: Uint32Vec2, func_idx, key) -> Float32Vec2:
    r = uint32x2(counter, func_idx, key)
    return Float32Vec2(uint32_to_float32(r.x), uint32_to_float32(r.y))


def float32_range11(counter: Uint32Vec2, func_idx, key) -> np.float32:
    return uint32_to_float32_11(uint32(counter, func_idx, key))


def float32_norm(counter: Uint32Vec2, func_idx, key) -> np.float32:
    """Standard normal sample (Box-Muller on one uint32x2 draw)."""
    f = float32x2(counter, func_idx, key)
    r = np.sqrt(np.float32(-2.0) * np.log(np.float32(1.0) - f.x))
    return np.float32(r * np.cos(np.float32(2.0 * np.pi) * f.y))
