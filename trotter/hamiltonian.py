"""Single-particle Hamiltonian on the lattice.

    H = p²/2m + V(x, y) + g·|ψ|² − Ω·L_z

The rotating-frame term is carried as a vector potential
A = m·Ω·(−(y − y_c), x − x_c): hopping bonds pick up Peierls phases
φ_x = A_x·Δx, φ_y = A_y·Δy and the potential gains the centrifugal
correction −½·m·Ω²·r², since p²/2m − Ω·L_z = (p − A)²/2m − A²/2m.
"""

from __future__ import annotations

import itertools
import math
from typing import Callable, Optional, Union

import numpy as np
import torch

from .console import console
from .errors import ConfigurationError, DomainError
from .lattice import Lattice

PotentialLike = Union[Callable[[np.ndarray, np.ndarray], np.ndarray], float, int, None]

_instance_ids = itertools.count()


class Hamiltonian:
    def __init__(
        self,
        lattice: Lattice,
        mass: float = 1.0,
        coupling: float = 0.0,
        angular_velocity: Optional[float] = None,
        rot_coord_x: Optional[float] = None,
        rot_coord_y: Optional[float] = None,
        *,
        potential: PotentialLike = None,
        device: str | torch.device | None = None,
    ) -> None:
        if not math.isfinite(float(mass)) or mass <= 0.0:
            raise ConfigurationError(f"particle mass must be positive, got {mass}")
        if not math.isfinite(float(coupling)):
            raise ConfigurationError(f"coupling constant must be finite, got {coupling}")
        omega = lattice.angular_velocity if angular_velocity is None else float(angular_velocity)
        if not math.isfinite(omega):
            raise ConfigurationError(f"angular velocity must be finite, got {angular_velocity}")
        self.lattice = lattice
        self._mass = float(mass)
        self._coupling = float(coupling)
        self._angular_velocity = omega
        self._rot_coord_x = 0.5 * lattice.length_x if rot_coord_x is None else float(rot_coord_x)
        self._rot_coord_y = 0.5 * lattice.length_y if rot_coord_y is None else float(rot_coord_y)
        self._instance_id = next(_instance_ids)
        self.device = torch.device("cpu") if device is None else torch.device(device)
        self.version = 0
        if omega != 0.0 and (lattice.periodic_x or lattice.periodic_y):
            console.warn(
                "Rotating frame on a periodic lattice",
                detail="bond phases do not wrap consistently across the periodic seam",
            )
        self.potential = torch.zeros(lattice.local_shape, dtype=torch.float64, device=self.device)
        self.initialize_potential(potential)

    # Read-only: kernels cache coefficients derived from these. The potential
    # changes only through initialize_potential, which bumps ``version``.

    @property
    def mass(self) -> float:
        return self._mass

    @property
    def coupling(self) -> float:
        return self._coupling

    @property
    def angular_velocity(self) -> float:
        return self._angular_velocity

    @property
    def rot_coord_x(self) -> float:
        return self._rot_coord_x

    @property
    def rot_coord_y(self) -> float:
        return self._rot_coord_y

    @property
    def cache_token(self) -> tuple[int, int]:
        """Identifies this Hamiltonian and its potential revision for coefficient caches."""
        return self._instance_id, self.version

    def initialize_potential(self, potential: PotentialLike = None) -> None:
        """Evaluate V(x, y) on the local interior (or store a constant)."""
        X, Y = self.lattice.coordinates()
        if potential is None:
            values = np.zeros(X.shape, dtype=np.float64)
        elif callable(potential):
            raw = np.asarray(potential(X, Y))
            if np.iscomplexobj(raw):
                raise DomainError("potential must be real valued")
            values = np.broadcast_to(raw.astype(np.float64), X.shape)
        else:
            values = np.full(X.shape, float(potential), dtype=np.float64)
        if not np.all(np.isfinite(values)):
            bad = int(np.count_nonzero(~np.isfinite(values)))
            raise DomainError(f"potential has {bad} non-finite values on rank {self.lattice.rank}")
        self.potential = torch.from_numpy(np.array(values, dtype=np.float64)).to(self.device)
        self.version += 1

    @property
    def hopping(self) -> tuple[float, float]:
        """Hopping amplitudes (t_x, t_y) = 1/(2·m·Δ²) of the discrete Laplacian."""
        tx = 1.0 / (2.0 * self.mass * self.lattice.delta_x**2)
        ty = 1.0 / (2.0 * self.mass * self.lattice.delta_y**2)
        return tx, ty

    @property
    def onsite(self) -> float:
        tx, ty = self.hopping
        return 2.0 * (tx + ty)

    @property
    def effective_potential(self) -> torch.Tensor:
        """V minus the centrifugal term of the rotating frame, on the interior."""
        if self.angular_velocity == 0.0:
            return self.potential
        X, Y = self.lattice.coordinates()
        r2 = (X - self.rot_coord_x) ** 2 + (Y - self.rot_coord_y) ** 2
        centrifugal = 0.5 * self.mass * self.angular_velocity**2 * r2
        return self.potential - torch.from_numpy(centrifugal).to(self.device)

    def bond_phases(self, include_halo: bool = True) -> tuple[torch.Tensor, torch.Tensor]:
        """Peierls phases over the extended block (or the interior only).

        Returns (phi_x, phi_y): phi_x[row] applies to every x bond in that
        row, phi_y[col] to every y bond in that column.
        """
        row_idx, col_idx = self.lattice.global_indices(include_halo=include_halo)
        y = row_idx * self.lattice.delta_y
        x = col_idx * self.lattice.delta_x
        m_omega = self.mass * self.angular_velocity
        phi_x = -m_omega * (y - self.rot_coord_y) * self.lattice.delta_x
        phi_y = m_omega * (x - self.rot_coord_x) * self.lattice.delta_y
        return (
            torch.from_numpy(phi_x.astype(np.float64)).to(self.device),
            torch.from_numpy(phi_y.astype(np.float64)).to(self.device),
        )

    def to(self, device: str | torch.device) -> Hamiltonian:
        self.device = torch.device(device)
        self.potential = self.potential.to(self.device)
        return self
