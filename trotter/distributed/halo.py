from __future__ import annotations

from typing import TYPE_CHECKING

import torch

from .runtime import Face, Transport

if TYPE_CHECKING:
    from ..lattice import Lattice


class HaloExchanger:
    """Fills the halo border of an extended (rows + 2h, cols + 2h) buffer.

    The exchange runs in two phases: x faces over the interior rows, then y
    faces over the full extended width, so the corner blocks are relayed
    through the x neighbours. Faces without a neighbour (closed boundary)
    keep whatever the halo held, which is zero for a freshly allocated State.
    """

    def __init__(self, lattice: Lattice, transport: Transport) -> None:
        self.lattice = lattice
        self.transport = transport
        self.tick = 0
        neighbors = lattice.neighbors
        self._x_neighbors: dict[Face, int] = {face: neighbors[face] for face in ("x-", "x+")}
        self._y_neighbors: dict[Face, int] = {face: neighbors[face] for face in ("y-", "y+")}

    def exchange(self, psi: torch.Tensor) -> None:
        h = self.lattice.halo
        rows, cols = self.lattice.local_shape

        send = {
            "x-": psi[h : h + rows, h : 2 * h].contiguous(),
            "x+": psi[h : h + rows, cols : cols + h].contiguous(),
        }
        recv = self.transport.exchange_halos(
            tick=self.tick,
            phase="halo_x",
            send_buffers=send,
            neighbors=self._x_neighbors,
            device=psi.device,
        )
        if "x-" in recv:
            psi[h : h + rows, :h].copy_(recv["x-"])
        if "x+" in recv:
            psi[h : h + rows, cols + h :].copy_(recv["x+"])

        send = {
            "y-": psi[h : 2 * h, :].contiguous(),
            "y+": psi[rows : rows + h, :].contiguous(),
        }
        recv = self.transport.exchange_halos(
            tick=self.tick,
            phase="halo_y",
            send_buffers=send,
            neighbors=self._y_neighbors,
            device=psi.device,
        )
        if "y-" in recv:
            psi[:h, :].copy_(recv["y-"])
        if "y+" in recv:
            psi[rows + h :, :].copy_(recv["y+"])
        self.tick += 1
