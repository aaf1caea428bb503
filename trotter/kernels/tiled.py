"""Cache-blocked kernel on host memory.

The interior is processed in rectangular tiles. Each tile is read together
with a halo-wide margin from a snapshot of the extended buffer taken before
the half step, all four sweeps run on that small block, and only the tile's
own cells are written back. The margin absorbs the edge corruption of the
sweeps, so the result matches the reference kernel cell for cell.

Sweeps are expressed per cell instead of per bond:

    out = diag·w + next·w[→] + prev·w[←]

where ``next`` is non-zero only on the left cell of a bond and ``prev`` only
on its right cell.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..distributed.halo import HaloExchanger
from ..errors import ConfigurationError
from ..state import State
from .base import BondSweep, Kernel, StepCoefficients, SweepKey


@dataclass(frozen=True)
class CellSweep:
    axis: str
    diag: np.ndarray
    next: np.ndarray
    prev: np.ndarray


@dataclass(frozen=True)
class TiledCoefficients:
    sweeps: dict[SweepKey, CellSweep]
    onsite: complex
    potential: np.ndarray
    nonlinear: complex


def _cell_sweep(sweep: BondSweep, shape: tuple[int, int]) -> CellSweep:
    diag = np.ones(shape, dtype=np.complex128)
    nxt = np.zeros(shape, dtype=np.complex128)
    prv = np.zeros(shape, dtype=np.complex128)
    start, n = sweep.start, sweep.count
    if n:
        d = sweep.diag.cpu().numpy()
        fw = sweep.forward.cpu().numpy()
        bw = sweep.backward.cpu().numpy()
        left = slice(start, start + 2 * n, 2)
        right = slice(start + 1, start + 2 * n, 2)
        if sweep.axis == "x":
            diag[:, left] = d
            diag[:, right] = d
            nxt[:, left] = fw
            prv[:, right] = bw
        else:
            diag[left, :] = d
            diag[right, :] = d
            nxt[left, :] = fw
            prv[right, :] = bw
    return CellSweep(axis=sweep.axis, diag=diag, next=nxt, prev=prv)


class TiledKernel(Kernel):
    name = "tiled"

    def __init__(self, exchanger: HaloExchanger, *, tile_shape: tuple[int, int] = (64, 64)) -> None:
        rows, cols = (int(v) for v in tile_shape)
        if rows < 1 or cols < 1:
            raise ConfigurationError(f"tile shape must be positive, got {tile_shape}")
        super().__init__(exchanger)
        self.tile_shape = (rows, cols)

    @classmethod
    def create(cls, exchanger: HaloExchanger, *, tile_shape: tuple[int, int]) -> TiledKernel:
        return cls(exchanger, tile_shape=tile_shape)

    def _prepare(self, coeffs: StepCoefficients) -> TiledCoefficients:
        shape = self.exchanger.lattice.extended_shape
        return TiledCoefficients(
            sweeps={key: _cell_sweep(sweep, shape) for key, sweep in coeffs.sweeps.items()},
            onsite=coeffs.onsite,
            potential=coeffs.potential.cpu().numpy(),
            nonlinear=coeffs.nonlinear,
        )

    def _kinetic_half(
        self, state: State, cached: TiledCoefficients, order: tuple[SweepKey, ...]
    ) -> None:
        psi = state.psi.numpy()
        source = psi.copy()
        h = state.lattice.halo
        rows, cols = state.lattice.local_shape
        tile_rows, tile_cols = self.tile_shape
        for r0 in range(h, h + rows, tile_rows):
            r1 = min(r0 + tile_rows, h + rows)
            for c0 in range(h, h + cols, tile_cols):
                c1 = min(c0 + tile_cols, h + cols)
                window = (slice(r0 - h, r1 + h), slice(c0 - h, c1 + h))
                block = source[window].copy()
                for key in order:
                    block = self._sweep(block, cached.sweeps[key], window)
                psi[r0:r1, c0:c1] = block[h:-h, h:-h] * cached.onsite

    @staticmethod
    def _sweep(block: np.ndarray, sweep: CellSweep, window: tuple[slice, slice]) -> np.ndarray:
        diag = sweep.diag[window]
        nxt = sweep.next[window]
        prv = sweep.prev[window]
        out = diag * block
        if sweep.axis == "x":
            out[:, :-1] += nxt[:, :-1] * block[:, 1:]
            out[:, 1:] += prv[:, 1:] * block[:, :-1]
        else:
            out[:-1, :] += nxt[:-1, :] * block[1:, :]
            out[1:, :] += prv[1:, :] * block[:-1, :]
        return out

    def _potential(self, state: State, cached: TiledCoefficients) -> None:
        psi = state.interior.numpy()
        factor = cached.potential
        if cached.nonlinear != 0:
            factor = factor * np.exp(cached.nonlinear * (psi.real**2 + psi.imag**2))
        psi *= factor

