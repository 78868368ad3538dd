"""
Central-difference Jacobians on manifolds, for checking analytic Jacobians.

Arguments and results are either group elements (moved and compared through
their traits) or plain vectors. Column j of a derivative is
(Local(h(x), h(Retract(x, d e_j))) - Local(h(x), h(Retract(x, -d e_j)))) / 2d.
"""
from typing import Callable

import numpy as np

from lie import traits

DEFAULT_DELTA = 1e-5


def _dimension(x) -> int:
    if isinstance(x, np.ndarray):
        return x.size
    return traits(type(x)).GetDimension(x)


def _retract(x, dx: np.ndarray):
    if isinstance(x, np.ndarray):
        return x + dx
    return traits(type(x)).Retract(x, dx)


def _local(x, y) -> np.ndarray:
    if isinstance(x, np.ndarray):
        return np.atleast_1d(y - x)
    return traits(type(x)).Local(x, y)


def numerical_derivative11(h: Callable, x, delta: float = DEFAULT_DELTA) -> np.ndarray:
    hx = h(x)
    n = _dimension(x)
    m = _dimension(hx)
    H = np.zeros((m, n))
    factor = 1.0 / (2.0 * delta)
    for j in range(n):
        dx = np.zeros(n)
        dx[j] = delta
        plus = _local(hx, h(_retract(x, dx)))
        minus = _local(hx, h(_retract(x, -dx)))
        H[:, j] = factor * (plus - minus)
    return H


def numerical_derivative21(h: Callable, x1, x2, delta: float = DEFAULT_DELTA) -> np.ndarray:
    return numerical_derivative11(lambda a: h(a, x2), x1, delta)


def numerical_derivative22(h: Callable, x1, x2, delta: float = DEFAULT_DELTA) -> np.ndarray:
    return numerical_derivative11(lambda b: h(x1, b), x2, delta)
