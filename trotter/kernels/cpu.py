from __future__ import annotations

import torch

from ..distributed.halo import HaloExchanger
from ..errors import ConfigurationError
from ..state import State
from .base import Kernel, StepCoefficients, SweepKey
from .runtime import cuda_supported


class CPUKernel(Kernel):
    """Reference kernel: every bond of one parity is updated by a strided torch slice."""

    name = "cpu"

    def _kinetic_half(
        self, state: State, cached: StepCoefficients, order: tuple[SweepKey, ...]
    ) -> None:
        work = state.psi.clone()
        for key in order:
            sweep = cached.sweeps[key]
            start, n = sweep.start, sweep.count
            if n == 0:
                continue
            if sweep.axis == "x":
                a = work[:, start : start + 2 * n : 2]
                b = work[:, start + 1 : start + 2 * n : 2]
            else:
                a = work[start : start + 2 * n : 2, :]
                b = work[start + 1 : start + 2 * n : 2, :]
            new_a = sweep.diag * a + sweep.forward * b
            new_b = sweep.backward * a + sweep.diag * b
            a.copy_(new_a)
            b.copy_(new_b)
        interior = state.lattice.interior
        state.psi[interior] = work[interior] * cached.onsite

    def _potential(self, state: State, cached: StepCoefficients) -> None:
        psi = state.interior
        factor = cached.potential
        if cached.nonlinear != 0:
            factor = factor * torch.exp(cached.nonlinear * (psi.real**2 + psi.imag**2))
        psi.mul_(factor)


class GPUKernel(CPUKernel):
    """Same sweeps as the reference kernel, on a CUDA device."""

    name = "gpu"

    def __init__(self, exchanger: HaloExchanger, *, device: str | torch.device | None = None) -> None:
        if not cuda_supported():
            raise ConfigurationError("kernel 'gpu' requested but no CUDA device is available")
        super().__init__(exchanger, device=device)
