from __future__ import annotations

from dataclasses import dataclass

from ..errors import ConfigurationError
from .runtime import NO_NEIGHBOR, Face, RankConfig


def balanced_process_grid(
    world_size: int, grid_shape: tuple[int, int], *, min_extent: int = 1
) -> tuple[int, int]:
    """Factor ``world_size`` into a (proc_rows, proc_cols) process grid.

    Picks the factorisation with the smallest tile perimeter (halo traffic),
    preferring row splits on ties, among those that leave every tile at least
    ``min_extent`` cells along both axes.
    """
    rows, cols = grid_shape
    if world_size < 1:
        raise ConfigurationError(f"world_size must be positive, got {world_size}")
    best: tuple[tuple[int, int], tuple[int, int]] | None = None
    for proc_rows in range(1, world_size + 1):
        if world_size % proc_rows != 0:
            continue
        proc_cols = world_size // proc_rows
        if rows // proc_rows < min_extent or cols // proc_cols < min_extent:
            continue
        tile_rows = -(-rows // proc_rows)
        tile_cols = -(-cols // proc_cols)
        key = (tile_rows + tile_cols, -proc_rows)
        if best is None or key < best[0]:
            best = (key, (proc_rows, proc_cols))
    if best is None:
        raise ConfigurationError(
            f"cannot partition a {rows}x{cols} grid across {world_size} workers "
            f"with at least {min_extent} cells per worker and axis"
        )
    return best[1]


def axis_bounds(total: int, parts: int, index: int) -> tuple[int, int]:
    base = total // parts
    rem = total % parts
    start = index * base + min(index, rem)
    size = base + (1 if index < rem else 0)
    return int(start), int(start + size)


@dataclass(frozen=True)
class CartesianTopology:
    """2D block decomposition of a (rows, cols) grid.

    ``periodic`` is ordered like the grid shape: (row axis / y, column axis / x).
    Ranks are laid out row-major over the tile grid.
    """

    global_grid_size: tuple[int, int]
    tile_grid_shape: tuple[int, int]
    halo_thickness: int = 2
    periodic: tuple[bool, bool] = (False, False)

    def __post_init__(self) -> None:
        gr, gc = self.global_grid_size
        tr, tc = self.tile_grid_shape
        if gr < 1 or gc < 1:
            raise ConfigurationError(f"grid dimensions must be positive: {self.global_grid_size}")
        if tr < 1 or tc < 1:
            raise ConfigurationError(f"tile grid dimensions must be positive: {self.tile_grid_shape}")
        if self.halo_thickness < 1:
            raise ConfigurationError(f"halo_thickness must be >= 1, got {self.halo_thickness}")
        min_extent = max(self.halo_thickness, 1)
        if gr // tr < min_extent or gc // tc < min_extent:
            raise ConfigurationError(
                f"cannot split a {gr}x{gc} grid into {tr}x{tc} tiles: every tile needs "
                f"at least {min_extent} cells per axis to fill its neighbours' halos"
            )

    @property
    def world_size(self) -> int:
        tr, tc = self.tile_grid_shape
        return int(tr * tc)

    def rank_to_coords(self, rank_id: int) -> tuple[int, int]:
        _, tc = self.tile_grid_shape
        if rank_id < 0 or rank_id >= self.world_size:
            raise ConfigurationError(f"rank_id out of range: {rank_id}")
        return rank_id // tc, rank_id % tc

    def coords_to_rank(self, coords: tuple[int, int]) -> int:
        tr, tc = self.tile_grid_shape
        r, c = coords
        periodic_rows, periodic_cols = self.periodic
        if periodic_rows:
            r %= tr
        if periodic_cols:
            c %= tc
        if not (0 <= r < tr and 0 <= c < tc):
            return NO_NEIGHBOR
        return int(r * tc + c)

    def bounds(self, rank_id: int) -> tuple[int, int, int, int]:
        """(row_start, row_end, col_start, col_end) of a rank's interior."""
        gr, gc = self.global_grid_size
        tr, tc = self.tile_grid_shape
        r, c = self.rank_to_coords(rank_id)
        row_start, row_end = axis_bounds(gr, tr, r)
        col_start, col_end = axis_bounds(gc, tc, c)
        return row_start, row_end, col_start, col_end

    def build_rank_config(self, rank_id: int) -> RankConfig:
        r, c = self.rank_to_coords(rank_id)
        row_start, row_end, col_start, col_end = self.bounds(rank_id)
        neighbors: dict[Face, int] = {
            "x-": self.coords_to_rank((r, c - 1)),
            "x+": self.coords_to_rank((r, c + 1)),
            "y-": self.coords_to_rank((r - 1, c)),
            "y+": self.coords_to_rank((r + 1, c)),
        }
        return RankConfig(
            rank_id=rank_id,
            neighbor_ids=neighbors,
            tile_coords=(r, c),
            tile_origin=(row_start, col_start),
            local_grid_size=(row_end - row_start, col_end - col_start),
            halo_thickness=self.halo_thickness,
        )
