from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import torch

from .distributed.runtime import Transport, resolve_transport
from .errors import DomainError
from .lattice import Lattice


class State:
    """Local block of the wavefunction plus its halo border.

    ``psi`` has shape ``lattice.extended_shape``; the interior is
    ``psi[lattice.interior]``. Halo cells mirror the neighbours' interior as
    of the most recent exchange and are zero beyond a closed boundary.
    """

    def __init__(
        self,
        lattice: Lattice,
        *,
        device: str | torch.device | None = None,
        dtype: torch.dtype = torch.complex128,
    ) -> None:
        if not dtype.is_complex:
            raise DomainError(f"State needs a complex dtype, got {dtype}")
        self.lattice = lattice
        self.dtype = dtype
        self.psi = torch.zeros(
            lattice.extended_shape,
            dtype=dtype,
            device=torch.device("cpu") if device is None else torch.device(device),
        )
        self.time = 0.0

    @property
    def device(self) -> torch.device:
        return self.psi.device

    @property
    def interior(self) -> torch.Tensor:
        return self.psi[self.lattice.interior]

    def init_state(
        self,
        fn: Callable[[np.ndarray, np.ndarray], np.ndarray | complex],
        *,
        vectorized: bool = True,
    ) -> None:
        """Evaluate ``fn(x, y)`` on every interior point.

        With ``vectorized`` the function receives the coordinate meshgrids
        and may return an array or a scalar; otherwise it is called once per
        point with Python floats.
        """
        X, Y = self.lattice.coordinates()
        if vectorized:
            values = np.broadcast_to(np.asarray(fn(X, Y), dtype=np.complex128), X.shape)
        else:
            values = np.frompyfunc(fn, 2, 1)(X, Y).astype(np.complex128)
        self._load_interior(values)

    def init_from_array(self, array: np.ndarray) -> None:
        """Load this rank's block of a global (rows, cols) array."""
        arr = np.asarray(array, dtype=np.complex128)
        if arr.shape != self.lattice.shape:
            raise DomainError(
                f"initial array has shape {arr.shape}, lattice is {self.lattice.shape}"
            )
        r0, r1, c0, c1 = self.lattice.bounds_for(self.lattice.rank)
        self._load_interior(arr[r0:r1, c0:c1])

    def _load_interior(self, values: np.ndarray) -> None:
        if not np.all(np.isfinite(values)):
            bad = int(np.count_nonzero(~np.isfinite(values)))
            raise DomainError(f"initial state has {bad} non-finite values")
        block = torch.from_numpy(np.array(values, dtype=np.complex128)).to(device=self.device, dtype=self.dtype)
        self.psi.zero_()
        self.interior.copy_(block)
        self.time = 0.0

    def local_norm2(self) -> float:
        cell = self.lattice.delta_x * self.lattice.delta_y
        return float(torch.sum(torch.abs(self.interior) ** 2).item()) * cell

    def norm2(self, transport: Optional[Transport] = None) -> float:
        """Global Σ|ψ|²·dx·dy over every rank's interior."""
        transport = resolve_transport(transport, world_size=self.lattice.world_size, rank=self.lattice.rank)
        local = torch.tensor([self.local_norm2()], dtype=torch.float64)
        return float(transport.allreduce_sum(local)[0].item())

    def scale(self, factor: float | complex) -> None:
        self.interior.mul_(factor)

    def normalize(self, transport: Optional[Transport] = None) -> float:
        """Rescale to unit global norm; returns the norm before rescaling."""
        norm = self.norm2(transport)
        if not np.isfinite(norm) or norm <= 0.0:
            raise DomainError(f"cannot normalise a state with norm {norm}")
        self.scale(1.0 / np.sqrt(norm))
        return norm

    def gather(self, transport: Optional[Transport] = None) -> np.ndarray:
        """Assemble the global (rows, cols) wavefunction on every rank."""
        transport = resolve_transport(transport, world_size=self.lattice.world_size, rank=self.lattice.rank)
        block = self.interior.detach().cpu().numpy().copy()
        parts = transport.all_gather_object((self.lattice.rank, block))
        out = np.zeros(self.lattice.shape, dtype=np.complex128)
        for rank, part in parts:
            r0, r1, c0, c1 = self.lattice.bounds_for(rank)
            out[r0:r1, c0:c1] = part
        return out

    def to(self, device: str | torch.device) -> State:
        self.psi = self.psi.to(torch.device(device))
        return self

    def copy(self) -> State:
        other = State(self.lattice, device=self.device, dtype=self.dtype)
        other.psi.copy_(self.psi)
        other.time = self.time
        return other
