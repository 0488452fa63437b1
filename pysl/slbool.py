"""Bools stored as int32 so they can live in GPU buffers."""

import numpy as np

FALSE = np.int32(0)
TRUE = np.int32(1)


def from_bool(b) -> np.int32:
    return TRUE if b else FALSE


def is_true(v) -> bool:
    return bool(v == TRUE)


def is_false(v) -> bool:
    return bool(v == FALSE)
