"""Time evolution driver.

The Solver owns the run: it wires the halo exchanger and kernel to a
transport, advances the state step by step and keeps every rank in lockstep
through one collective reduction per check period. Any failure inside the
loop aborts the process group before it propagates, so peers blocked in an
exchange fail instead of waiting forever.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Optional

import torch

from .console import console
from .distributed.halo import HaloExchanger
from .distributed.runtime import Transport, resolve_transport
from .errors import ConfigurationError, NumericalError, TrotterError
from .hamiltonian import Hamiltonian
from .kernels import Kernel, create_kernel
from .lattice import Lattice
from .observables import EnergyComponents, energy_components, mean_position, total_energy
from .snapshot import Snapshot
from .state import State


@dataclass(frozen=True)
class SolverConfig:
    # Imaginary time: steps between renormalisations.
    normalization_period: int = 1
    # Real time: steps between finite-value checks.
    check_period: int = 1
    tile_shape: tuple[int, int] = (64, 64)
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.normalization_period < 1:
            raise ConfigurationError(
                f"normalization_period must be >= 1, got {self.normalization_period}"
            )
        if self.check_period < 1:
            raise ConfigurationError(f"check_period must be >= 1, got {self.check_period}")
        if len(self.tile_shape) != 2 or min(self.tile_shape) < 1:
            raise ConfigurationError(f"tile_shape must be two positive ints, got {self.tile_shape}")


class Solver:
    def __init__(
        self,
        lattice: Lattice,
        state: State,
        hamiltonian: Hamiltonian,
        delta_t: float,
        kernel: str = "cpu",
        *,
        transport: Optional[Transport] = None,
        config: Optional[SolverConfig] = None,
    ) -> None:
        if not math.isfinite(float(delta_t)) or delta_t <= 0.0:
            raise ConfigurationError(f"delta_t must be positive and finite, got {delta_t}")
        if state.lattice is not lattice or hamiltonian.lattice is not lattice:
            raise ConfigurationError("state and hamiltonian must be built on the solver's lattice")
        self.lattice = lattice
        self.state = state
        self.hamiltonian = hamiltonian
        self.delta_t = float(delta_t)
        self.config = config or SolverConfig()
        self.transport = resolve_transport(transport, world_size=lattice.world_size, rank=lattice.rank)
        self.exchanger = HaloExchanger(lattice, self.transport)
        self.kernel: Kernel = create_kernel(kernel, self.exchanger, tile_shape=self.config.tile_shape)
        self.state.to(self.kernel.device)
        self.hamiltonian.to(self.kernel.device)

        self.iterations = 0
        self.elapsed_time = 0.0
        self.imag_time = False
        self.last_norm: Optional[float] = None

        if self.config.verbose and lattice.rank == 0:
            console.header(
                "TROTTER",
                grid=f"{lattice.rows}x{lattice.cols}",
                kernel=self.kernel.name,
                workers=str(lattice.world_size),
                process_grid="x".join(str(v) for v in lattice.process_grid),
                delta_t=f"{self.delta_t:g}",
            )

    @property
    def kernel_name(self) -> str:
        return self.kernel.name

    def set_kernel(self, name: str) -> None:
        """Kernels are chosen once per run; re-selecting the current one is allowed."""
        if name != self.kernel.name:
            raise ConfigurationError(
                f"kernel is fixed to {self.kernel.name!r} for this run, cannot switch to {name!r}"
            )

    def evolve(self, iterations: int, imag_time: bool = False) -> None:
        """Advance ``iterations`` Trotter-Suzuki steps of size ``delta_t``.

        In imaginary time the state is renormalised every
        ``normalization_period`` steps and after the last one; in real time
        the same reduction only checks for non-finite values, every
        ``check_period`` steps. Collective: all ranks must call it with the
        same arguments.
        """
        if int(iterations) != iterations or iterations < 0:
            raise ConfigurationError(f"iterations must be a non-negative integer, got {iterations}")
        iterations = int(iterations)
        self.imag_time = bool(imag_time)
        if iterations == 0:
            return
        period = self.config.normalization_period if imag_time else self.config.check_period
        try:
            for i in range(1, iterations + 1):
                self.kernel.step(self.state, self.hamiltonian, self.delta_t, imag_time=imag_time)
                self.iterations += 1
                self.elapsed_time += self.delta_t
                if i % period == 0 or i == iterations:
                    self._reduce(renormalize=imag_time)
        except (TrotterError, RuntimeError) as exc:
            self._abort(exc)
            raise

    def _reduce(self, *, renormalize: bool) -> None:
        local = torch.tensor(
            [self.state.local_norm2(), float(self.kernel.count_nonfinite(self.state))],
            dtype=torch.float64,
        )
        total = self.transport.allreduce_sum(local)
        norm = float(total[0].item())
        bad = int(total[1].item())
        if bad > 0 or not math.isfinite(norm):
            raise NumericalError(
                f"{bad} non-finite amplitudes after step {self.iterations} (norm={norm})"
            )
        if norm <= 0.0:
            raise NumericalError(f"wavefunction norm vanished after step {self.iterations}")
        if renormalize:
            self.state.scale(1.0 / math.sqrt(norm))
        self.last_norm = norm

    def _abort(self, exc: BaseException) -> None:
        reason = f"rank {self.lattice.rank}: {type(exc).__name__}: {exc}"
        self.transport.abort(reason)
        console.error("Evolution aborted", detail=reason)

    # Observables ----------------------------------------------------------

    def norm2(self) -> float:
        return self.state.norm2(self.transport)

    def energy_components(self) -> EnergyComponents:
        return energy_components(self.state, self.hamiltonian, self.exchanger, self.transport)

    def total_energy(self) -> float:
        return total_energy(self.state, self.hamiltonian, self.exchanger, self.transport)

    def mean_position(self) -> tuple[float, float]:
        return mean_position(self.state, self.transport)

    def snapshot(self, label: Optional[str] = None) -> Snapshot:
        """Gather the global wavefunction with run metadata (collective)."""
        lattice = self.lattice
        return Snapshot(
            psi=self.state.gather(self.transport),
            rows=lattice.rows,
            cols=lattice.cols,
            length_x=lattice.length_x,
            length_y=lattice.length_y,
            delta_x=lattice.delta_x,
            delta_y=lattice.delta_y,
            iterations=self.iterations,
            elapsed_time=self.elapsed_time,
            delta_t=self.delta_t,
            imag_time=self.imag_time,
            label=label,
        )
