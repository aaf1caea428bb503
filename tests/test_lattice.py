from __future__ import annotations

import numpy as np
import pytest

from trotter import HALO, Lattice
from trotter.errors import ConfigurationError


def test_defaults_give_unit_spacing() -> None:
    lattice = Lattice(16, 24)
    assert lattice.shape == (16, 24)
    assert lattice.delta_x == pytest.approx(1.0)
    assert lattice.delta_y == pytest.approx(1.0)
    assert lattice.halo == HALO == 2
    assert lattice.local_shape == (16, 24)
    assert lattice.extended_shape == (20, 28)
    assert all(v == -1 for v in lattice.neighbors.values())


def test_single_rank_periodic_neighbors_are_self() -> None:
    lattice = Lattice(8, periodic_x=True, periodic_y=True)
    assert lattice.neighbors == {"x-": 0, "x+": 0, "y-": 0, "y+": 0}


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(rows=0),
        dict(rows=8, length_x=-1.0),
        dict(rows=8, length_y=0.0),
        dict(rows=9, periodic_y=True),
        dict(rows=8, cols=7, periodic_x=True),
        dict(rows=8, world_size=2, rank=2),
        dict(rows=8, world_size=4, process_grid=(3, 1)),
        dict(rows=3, cols=64, world_size=2, process_grid=(2, 1)),
    ],
)
def test_invalid_configuration(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        Lattice(**kwargs)


def test_more_workers_than_rows_fails() -> None:
    with pytest.raises(ConfigurationError):
        Lattice(3, 3, world_size=4)


def test_positions_and_local_index() -> None:
    lattice = Lattice(8, 8, length_x=4.0, length_y=2.0, world_size=4, rank=3)
    assert lattice.process_grid == (2, 2)
    assert lattice.local_offset == (4, 4)
    x, y = lattice.global_position(0, 1)
    assert x == pytest.approx(5 * 0.5)
    assert y == pytest.approx(4 * 0.25)
    assert lattice.local_index(x, y) == (0, 1)
    assert lattice.local_index(0.0, 0.0) is None


def test_coordinates_match_global_position() -> None:
    lattice = Lattice(6, 10, length_x=5.0, length_y=3.0)
    X, Y = lattice.coordinates()
    assert X.shape == Y.shape == (6, 10)
    rows, cols = np.meshgrid(np.arange(6), np.arange(10), indexing="ij")
    gx, gy = lattice.global_position(rows, cols)
    assert np.allclose(X, gx)
    assert np.allclose(Y, gy)


def test_halo_indices_wrap_on_periodic_axis() -> None:
    lattice = Lattice(8, 8, periodic_x=True)
    rows, cols = lattice.global_indices(include_halo=True)
    assert list(cols[:HALO]) == [6, 7]
    assert list(cols[-HALO:]) == [0, 1]
    assert list(rows[:HALO]) == [-2, -1]
