from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class Snapshot:
    """Global wavefunction and run metadata at one point of a simulation.

    Produced collectively by ``Solver.snapshot``; every rank receives the
    full array. Writing it anywhere is left to the caller.
    """

    psi: np.ndarray
    rows: int
    cols: int
    length_x: float
    length_y: float
    delta_x: float
    delta_y: float
    iterations: int
    elapsed_time: float
    delta_t: float
    imag_time: bool
    label: Optional[str] = None

    @property
    def density(self) -> np.ndarray:
        return np.abs(self.psi) ** 2

    @property
    def norm2(self) -> float:
        return float(np.sum(self.density)) * self.delta_x * self.delta_y
