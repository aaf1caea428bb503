"""Ready-made external potentials V(x, y).

Every potential is a plain function of numpy coordinate arrays returning a
real array of the same shape, which is what ``Hamiltonian.initialize_potential``
expects.
"""

from __future__ import annotations

import inspect
from typing import Callable

import numpy as np

from .errors import ConfigurationError

Potential = Callable[[np.ndarray, np.ndarray], np.ndarray]


def const_potential(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Zero everywhere: a free particle (in a box when the lattice is closed)."""
    return np.zeros(np.broadcast(np.asarray(x), np.asarray(y)).shape, dtype=np.float64)


def constant_potential(value: float = 0.0) -> Potential:
    def potential(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return const_potential(x, y) + float(value)

    return potential


def harmonic_potential(
    omega_x: float = 1.0,
    omega_y: float | None = None,
    center_x: float = 0.0,
    center_y: float = 0.0,
    mass: float = 1.0,
) -> Potential:
    """½·m·(ωx²·(x−cx)² + ωy²·(y−cy)²)."""
    omega_y = omega_x if omega_y is None else omega_y

    def potential(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return 0.5 * mass * (omega_x**2 * (x - center_x) ** 2 + omega_y**2 * (y - center_y) ** 2)

    return potential


def double_well_potential(
    omega: float = 1.0,
    separation: float = 2.0,
    center_x: float = 0.0,
    center_y: float = 0.0,
    mass: float = 1.0,
) -> Potential:
    """Two harmonic wells at cx ± separation/2, joined along their ridge."""
    half = 0.5 * separation

    def potential(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        dy2 = (y - center_y) ** 2
        left = 0.5 * mass * omega**2 * ((x - center_x + half) ** 2 + dy2)
        right = 0.5 * mass * omega**2 * ((x - center_x - half) ** 2 + dy2)
        return np.minimum(left, right)

    return potential


_FACTORIES: dict[str, Callable[..., Potential]] = {
    "constant": constant_potential,
    "harmonic": harmonic_potential,
    "double_well": double_well_potential,
}


def get_potential(name: str, **params: float) -> Potential:
    """Build a named potential; unknown parameters are rejected."""
    factory = _FACTORIES.get(name)
    if factory is None:
        raise ConfigurationError(
            f"unknown potential {name!r}; expected one of {sorted(_FACTORIES)}"
        )
    allowed = inspect.signature(factory).parameters
    unknown = sorted(set(params) - set(allowed))
    if unknown:
        raise ConfigurationError(f"potential {name!r} does not take {unknown}")
    return factory(**params)
