"""CPU side of the atomic operations on global variables.

Each function updates arr[idx] in place and returns the previous value,
matching the WGSL atomic built-ins the calls are translated into. Kernels
run sequentially on the CPU, so no locking is done.
"""


def _update(arr, idx, fn):
    old = arr[idx]
    arr[idx] = fn(old)
    return old


def add(arr, idx, val):
    return _update(arr, idx, lambda old: old + val)


def sub(arr, idx, val):
    return _update(arr, idx, lambda old: old - val)


def max(arr, idx, val):
    return _update(arr, idx, lambda old: val if val > old else old)


def min(arr, idx, val):
    return _update(arr, idx, lambda old: val if val < old else old)


def and_(arr, idx, val):
    return _update(arr, idx, lambda old: old & val)


def or_(arr, idx, val):
    return _update(arr, idx, lambda old: old | val)


def xor(arr, idx, val):
    return _update(arr, idx, lambda old: old ^ val)


def exchange(arr, idx, val):
    return _update(arr, idx, lambda old: val)
