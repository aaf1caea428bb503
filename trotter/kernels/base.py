"""Shared stepping contract for all kernel backends.

One call of ``Kernel.step`` advances the state by one second-order
(Strang) Trotter-Suzuki step:

    exchange → K(Δt/2) → V(Δt) → exchange → K(Δt/2, reversed)

The kinetic operator is split into four bond sweeps (x-even, x-odd,
y-even, y-odd). Each sweep applies the exact 2×2 exponential of the hopping
term to every bond of one parity along one axis, so the real-time step is
unitary bond by bond. Bonds that would cross a closed boundary are left as
the identity. The diagonal part of the discrete Laplacian is a constant
factor applied after the sweeps.

Each sweep can only corrupt the outermost layer of the buffer it runs on,
so a halo of two cells keeps the interior exact through one half step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import math
from typing import ClassVar, Hashable, Literal, Optional

import numpy as np
import torch

from ..distributed.halo import HaloExchanger
from ..errors import ConfigurationError
from ..hamiltonian import Hamiltonian
from ..lattice import Lattice
from ..state import State
from .runtime import get_device

Axis = Literal["x", "y"]
SweepKey = tuple[Axis, int]

SWEEPS_FORWARD: tuple[SweepKey, ...] = (("x", 0), ("x", 1), ("y", 0), ("y", 1))
SWEEPS_REVERSE: tuple[SweepKey, ...] = tuple(reversed(SWEEPS_FORWARD))


@dataclass(frozen=True)
class BondSweep:
    """Coefficients of one bond sweep over the extended block.

    Pairs are (start + 2k, start + 2k + 1) along ``axis`` for k < count.
    For a pair (a, b): a' = diag·a + forward·b, b' = backward·a + diag·b.
    """

    axis: Axis
    start: int
    count: int
    diag: torch.Tensor
    forward: torch.Tensor
    backward: torch.Tensor


@dataclass(frozen=True)
class StepCoefficients:
    sweeps: dict[SweepKey, BondSweep]
    onsite: complex
    potential: torch.Tensor
    nonlinear: complex


def build_coefficients(
    lattice: Lattice,
    hamiltonian: Hamiltonian,
    delta_t: float,
    *,
    imag_time: bool,
    device: torch.device,
) -> StepCoefficients:
    tau = 0.5 * delta_t
    tx, ty = hamiltonian.hopping
    phi_x, phi_y = (p.to(device) for p in hamiltonian.bond_phases())
    h = lattice.halo
    ext_rows, ext_cols = lattice.extended_shape
    row0, col0 = lattice.local_offset

    sweeps: dict[SweepKey, BondSweep] = {}
    for axis, hop, phases, offset, extent, total, periodic in (
        ("x", tx, phi_x, col0 - h, ext_cols, lattice.cols, lattice.periodic_x),
        ("y", ty, phi_y, row0 - h, ext_rows, lattice.rows, lattice.periodic_y),
    ):
        angle = hop * tau
        if imag_time:
            c, s = math.cosh(angle), complex(math.sinh(angle))
        else:
            c, s = math.cos(angle), 1j * math.sin(angle)
        for parity in (0, 1):
            start = (parity - offset) % 2
            count = (extent - start) // 2
            left = offset + start + 2 * np.arange(count)
            if periodic:
                valid = np.ones(count, dtype=bool)
            else:
                valid = (left >= 0) & (left + 1 <= total - 1)
            valid_t = torch.from_numpy(valid).to(device)
            diag = torch.where(
                valid_t,
                torch.tensor(c, dtype=torch.complex128, device=device),
                torch.tensor(1.0, dtype=torch.complex128, device=device),
            )
            off = torch.where(
                valid_t,
                torch.tensor(s, dtype=torch.complex128, device=device),
                torch.tensor(0.0, dtype=torch.complex128, device=device),
            )
            out_phase = torch.exp(-1j * phases.to(torch.complex128))
            in_phase = torch.exp(1j * phases.to(torch.complex128))
            if axis == "x":
                sweep = BondSweep(
                    axis="x",
                    start=start,
                    count=count,
                    diag=diag.unsqueeze(0),
                    forward=off.unsqueeze(0) * out_phase.unsqueeze(1),
                    backward=off.unsqueeze(0) * in_phase.unsqueeze(1),
                )
            else:
                sweep = BondSweep(
                    axis="y",
                    start=start,
                    count=count,
                    diag=diag.unsqueeze(1),
                    forward=off.unsqueeze(1) * out_phase.unsqueeze(0),
                    backward=off.unsqueeze(1) * in_phase.unsqueeze(0),
                )
            sweeps[(axis, parity)] = sweep

    v_eff = hamiltonian.effective_potential.to(device=device, dtype=torch.complex128)
    if imag_time:
        potential = torch.exp(-delta_t * v_eff)
        onsite = complex(math.exp(-tau * hamiltonian.onsite))
        nonlinear = complex(-delta_t * hamiltonian.coupling)
    else:
        potential = torch.exp(-1j * delta_t * v_eff)
        onsite = complex(np.exp(-1j * tau * hamiltonian.onsite))
        nonlinear = -1j * delta_t * hamiltonian.coupling
    return StepCoefficients(sweeps=sweeps, onsite=onsite, potential=potential, nonlinear=nonlinear)


class Kernel(ABC):
    """Applies full Trotter-Suzuki steps to a State.

    Kernels hold no simulation data. Coefficients are cached per
    (buffer shape, Δt, mode, Hamiltonian, potential version, device) and
    rebuilt when any of them changes.
    """

    name: ClassVar[str]

    def __init__(self, exchanger: HaloExchanger, *, device: str | torch.device | None = None) -> None:
        self.exchanger = exchanger
        self.device = get_device(self.name) if device is None else torch.device(device)
        self._cache_key: Optional[Hashable] = None
        self._cache: object = None

    @classmethod
    def create(cls, exchanger: HaloExchanger, *, tile_shape: tuple[int, int]) -> Kernel:
        del tile_shape
        return cls(exchanger)

    def coefficients(
        self, state: State, hamiltonian: Hamiltonian, delta_t: float, *, imag_time: bool
    ):
        key = (
            tuple(state.psi.shape),
            float(delta_t),
            bool(imag_time),
            hamiltonian.cache_token,
            str(state.device),
        )
        if key != self._cache_key:
            coeffs = build_coefficients(
                state.lattice, hamiltonian, delta_t, imag_time=imag_time, device=state.device
            )
            self._cache = self._prepare(coeffs)
            self._cache_key = key
        return self._cache

    def _prepare(self, coeffs: StepCoefficients):
        """Turn the shared coefficients into backend-specific buffers."""
        return coeffs

    def step(
        self, state: State, hamiltonian: Hamiltonian, delta_t: float, *, imag_time: bool = False
    ) -> None:
        if state.device.type != self.device.type:
            raise ConfigurationError(
                f"kernel {self.name!r} runs on {self.device.type}, state lives on {state.device.type}"
            )
        cached = self.coefficients(state, hamiltonian, delta_t, imag_time=imag_time)
        self.exchanger.exchange(state.psi)
        self._kinetic_half(state, cached, SWEEPS_FORWARD)
        self._potential(state, cached)
        self.exchanger.exchange(state.psi)
        self._kinetic_half(state, cached, SWEEPS_REVERSE)
        state.time += delta_t

    def count_nonfinite(self, state: State) -> int:
        return int(torch.count_nonzero(~torch.isfinite(state.interior)).item())

    @abstractmethod
    def _kinetic_half(self, state: State, cached, order: tuple[SweepKey, ...]) -> None:
        raise NotImplementedError

    @abstractmethod
    def _potential(self, state: State, cached) -> None:
        raise NotImplementedError
