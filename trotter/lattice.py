"""Discretised 2D domain and its partition across the process group.

Arrays are indexed ``[row, col]``: rows run along y, columns along x. The
global cell ``(r, c)`` sits at the physical position
``(x, y) = (c * delta_x, r * delta_y)``.

Every rank builds the same ``CartesianTopology`` from (grid shape, world
size), so the bounds of any rank are known locally without communication.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from .distributed.runtime import Face, RankConfig
from .distributed.topology import CartesianTopology, balanced_process_grid
from .errors import ConfigurationError

# One halo layer per bond parity along an axis.
HALO = 2


class Lattice:
    def __init__(
        self,
        rows: int,
        cols: Optional[int] = None,
        *,
        length_x: Optional[float] = None,
        length_y: Optional[float] = None,
        periodic_x: bool = False,
        periodic_y: bool = False,
        angular_velocity: float = 0.0,
        world_size: int = 1,
        rank: int = 0,
        process_grid: Optional[tuple[int, int]] = None,
    ) -> None:
        cols = rows if cols is None else cols
        if int(rows) != rows or int(cols) != cols or rows < 1 or cols < 1:
            raise ConfigurationError(f"grid dimensions must be positive integers, got {rows}x{cols}")
        self._rows = int(rows)
        self._cols = int(cols)
        self._length_x = float(self._cols if length_x is None else length_x)
        self._length_y = float(self._rows if length_y is None else length_y)
        for name, value in (("length_x", self._length_x), ("length_y", self._length_y)):
            if not math.isfinite(value) or value <= 0.0:
                raise ConfigurationError(f"{name} must be positive and finite, got {value}")
        if not math.isfinite(float(angular_velocity)):
            raise ConfigurationError(f"angular_velocity must be finite, got {angular_velocity}")
        self._angular_velocity = float(angular_velocity)
        self._periodic_x = bool(periodic_x)
        self._periodic_y = bool(periodic_y)
        if self._periodic_x and self._cols % 2 != 0:
            raise ConfigurationError(f"a periodic x axis needs an even number of columns, got {self._cols}")
        if self._periodic_y and self._rows % 2 != 0:
            raise ConfigurationError(f"a periodic y axis needs an even number of rows, got {self._rows}")

        if process_grid is None:
            process_grid = balanced_process_grid(world_size, (self._rows, self._cols), min_extent=HALO)
        elif process_grid[0] * process_grid[1] != world_size:
            raise ConfigurationError(
                f"process grid {process_grid} does not hold {world_size} workers"
            )
        if rank < 0 or rank >= world_size:
            raise ConfigurationError(f"rank {rank} out of range for world size {world_size}")
        self._topology = CartesianTopology(
            global_grid_size=(self._rows, self._cols),
            tile_grid_shape=(int(process_grid[0]), int(process_grid[1])),
            halo_thickness=HALO,
            periodic=(self._periodic_y, self._periodic_x),
        )
        self._rank = int(rank)
        self._rank_config = self._topology.build_rank_config(self._rank)

    def __repr__(self) -> str:
        return (
            f"Lattice({self._rows}x{self._cols}, length=({self._length_x}, {self._length_y}), "
            f"periodic=({self._periodic_x}, {self._periodic_y}), rank={self._rank}/{self.world_size}, "
            f"process_grid={self.process_grid})"
        )

    # Global description ---------------------------------------------------

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def shape(self) -> tuple[int, int]:
        return self._rows, self._cols

    @property
    def length_x(self) -> float:
        return self._length_x

    @property
    def length_y(self) -> float:
        return self._length_y

    @property
    def delta_x(self) -> float:
        return self._length_x / self._cols

    @property
    def delta_y(self) -> float:
        return self._length_y / self._rows

    @property
    def periodic_x(self) -> bool:
        return self._periodic_x

    @property
    def periodic_y(self) -> bool:
        return self._periodic_y

    @property
    def angular_velocity(self) -> float:
        return self._angular_velocity

    @property
    def halo(self) -> int:
        return HALO

    # Partition ------------------------------------------------------------

    @property
    def topology(self) -> CartesianTopology:
        return self._topology

    @property
    def rank_config(self) -> RankConfig:
        return self._rank_config

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._topology.world_size

    @property
    def process_grid(self) -> tuple[int, int]:
        return self._topology.tile_grid_shape

    @property
    def tile_coords(self) -> tuple[int, int]:
        return self._rank_config.tile_coords

    @property
    def local_shape(self) -> tuple[int, int]:
        return self._rank_config.local_grid_size

    @property
    def local_offset(self) -> tuple[int, int]:
        return self._rank_config.tile_origin

    @property
    def extended_shape(self) -> tuple[int, int]:
        r, c = self.local_shape
        return r + 2 * HALO, c + 2 * HALO

    @property
    def interior(self) -> tuple[slice, slice]:
        r, c = self.local_shape
        return slice(HALO, HALO + r), slice(HALO, HALO + c)

    @property
    def neighbors(self) -> dict[Face, int]:
        return dict(self._rank_config.neighbor_ids)

    def bounds_for(self, rank: int) -> tuple[int, int, int, int]:
        """(row_start, row_end, col_start, col_end) owned by ``rank``."""
        return self._topology.bounds(rank)

    # Coordinate mapping ---------------------------------------------------

    def global_indices(self, *, include_halo: bool = False) -> tuple[np.ndarray, np.ndarray]:
        """Global row and column indices of the local block.

        With ``include_halo`` the halo rows/columns are included; they wrap
        around periodic axes and run past the edge (negative or >= extent)
        on closed axes.
        """
        r0, c0 = self.local_offset
        r, c = self.local_shape
        pad = HALO if include_halo else 0
        row_idx = np.arange(r0 - pad, r0 + r + pad)
        col_idx = np.arange(c0 - pad, c0 + c + pad)
        if self._periodic_y:
            row_idx = row_idx % self._rows
        if self._periodic_x:
            col_idx = col_idx % self._cols
        return row_idx, col_idx

    def global_position(self, row, col) -> tuple[np.ndarray, np.ndarray]:
        """Physical (x, y) of local interior index (row, col); accepts arrays."""
        r0, c0 = self.local_offset
        grow = np.asarray(row) + r0
        gcol = np.asarray(col) + c0
        if self._periodic_y:
            grow = grow % self._rows
        if self._periodic_x:
            gcol = gcol % self._cols
        return gcol * self.delta_x, grow * self.delta_y

    def local_index(self, x: float, y: float) -> Optional[tuple[int, int]]:
        """Local interior index of the cell nearest to (x, y), or None if another rank owns it."""
        gcol = int(round(x / self.delta_x))
        grow = int(round(y / self.delta_y))
        if self._periodic_x:
            gcol %= self._cols
        if self._periodic_y:
            grow %= self._rows
        r0, c0 = self.local_offset
        r, c = self.local_shape
        if not (r0 <= grow < r0 + r and c0 <= gcol < c0 + c):
            return None
        return grow - r0, gcol - c0

    def coordinates(self, *, include_halo: bool = False) -> tuple[np.ndarray, np.ndarray]:
        """Meshgrids (X, Y) of physical coordinates over the local block."""
        row_idx, col_idx = self.global_indices(include_halo=include_halo)
        y = row_idx * self.delta_y
        x = col_idx * self.delta_x
        Y, X = np.meshgrid(y, x, indexing="ij")
        return X, Y
