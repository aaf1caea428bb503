"""Expectation values over the distributed wavefunction.

Every function here is collective: all ranks must call it together, and all
of them receive the same result. Local partial sums are packed into one
tensor so each observable costs a single reduction.
"""

from __future__ import annotations

from dataclasses import dataclass

import torch

from .distributed.halo import HaloExchanger
from .distributed.runtime import Transport
from .errors import NumericalError
from .hamiltonian import Hamiltonian
from .state import State


@dataclass(frozen=True)
class EnergyComponents:
    kinetic: float
    potential: float
    interaction: float

    @property
    def total(self) -> float:
        return self.kinetic + self.potential + self.interaction


def _bond_energy(a: torch.Tensor, b: torch.Tensor, hop: float, phase: torch.Tensor) -> torch.Tensor:
    # Σ 2·Re(a* · H_ab · b) with H_ab = −t·e^{−iφ}
    return -2.0 * hop * torch.sum(torch.real(torch.conj(a) * torch.exp(-1j * phase) * b))


def _checked(total: torch.Tensor, what: str) -> torch.Tensor:
    norm = float(total[-1].item())
    if not torch.isfinite(total).all() or norm <= 0.0:
        raise NumericalError(f"cannot evaluate {what}: norm is {norm}")
    return total


def energy_components(
    state: State,
    hamiltonian: Hamiltonian,
    exchanger: HaloExchanger,
    transport: Transport,
) -> EnergyComponents:
    """Kinetic, potential and interaction energy per unit norm.

    The kinetic part uses the same discrete Laplacian as the kernels,
    including the Peierls phases of the rotating frame, so it needs up to
    date halos: this performs one exchange before reducing.
    """
    lattice = state.lattice
    h = lattice.halo
    rows, cols = lattice.local_shape
    exchanger.exchange(state.psi)
    psi = state.psi
    inner = psi[h : h + rows, h : h + cols]
    density = inner.real**2 + inner.imag**2

    tx, ty = hamiltonian.hopping
    phi_x, phi_y = hamiltonian.bond_phases(include_halo=False)
    phi_x = phi_x.to(psi.device).to(psi.dtype)
    phi_y = phi_y.to(psi.device).to(psi.dtype)
    # Bonds owned by this rank start on an interior cell; partners past a
    # closed edge sit in a zero halo and add nothing.
    right = psi[h : h + rows, h + 1 : h + cols + 1]
    below = psi[h + 1 : h + rows + 1, h : h + cols]
    kinetic = hamiltonian.onsite * torch.sum(density)
    kinetic = kinetic + _bond_energy(inner, right, tx, phi_x.unsqueeze(1))
    kinetic = kinetic + _bond_energy(inner, below, ty, phi_y.unsqueeze(0))

    v_eff = hamiltonian.effective_potential.to(device=psi.device, dtype=density.dtype)
    potential = torch.sum(v_eff * density)
    interaction = 0.5 * hamiltonian.coupling * torch.sum(density**2)

    cell = lattice.delta_x * lattice.delta_y
    local = torch.stack([kinetic, potential, interaction, torch.sum(density)]).to(torch.float64) * cell
    total = _checked(transport.allreduce_sum(local.cpu()), "energy")
    norm = float(total[3].item())
    return EnergyComponents(
        kinetic=float(total[0].item()) / norm,
        potential=float(total[1].item()) / norm,
        interaction=float(total[2].item()) / norm,
    )


def total_energy(
    state: State, hamiltonian: Hamiltonian, exchanger: HaloExchanger, transport: Transport
) -> float:
    return energy_components(state, hamiltonian, exchanger, transport).total


def mean_position(state: State, transport: Transport) -> tuple[float, float]:
    """(⟨x⟩, ⟨y⟩) of the probability density."""
    X, Y = state.lattice.coordinates()
    inner = state.interior
    density = (inner.real**2 + inner.imag**2).to(torch.float64).cpu()
    local = torch.stack(
        [
            torch.sum(torch.from_numpy(X) * density),
            torch.sum(torch.from_numpy(Y) * density),
            torch.sum(density),
        ]
    )
    total = _checked(transport.allreduce_sum(local), "mean position")
    norm = float(total[2].item())
    return float(total[0].item()) / norm, float(total[1].item()) / norm
