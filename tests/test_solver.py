from __future__ import annotations

import math

import numpy as np
import pytest
import torch

from trotter import (
    Hamiltonian,
    Lattice,
    LoopbackTransport,
    Solver,
    SolverConfig,
    State,
    ThreadGroup,
    get_potential,
)
from trotter.errors import ConfigurationError, NumericalError


class RecordingTransport(LoopbackTransport):
    def __init__(self) -> None:
        self.aborts: list[str] = []

    def abort(self, reason: str) -> None:
        self.aborts.append(reason)


def _gaussian(cx: float, cy: float, sigma: float = 1.0):
    def fn(x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.exp(-((x - cx) ** 2 + (y - cy) ** 2) / (4.0 * sigma**2))

    return fn


def _plane_wave_solver(kernel: str = "cpu") -> tuple[Solver, float]:
    lattice = Lattice(64, 64, length_x=64.0, length_y=64.0, periodic_x=True, periodic_y=True)
    k = 2.0 * math.pi * 4 / 64
    state = State(lattice)
    state.init_state(lambda x, y: np.exp(1j * k * x) / 64.0)
    solver = Solver(lattice, state, Hamiltonian(lattice), 1e-3, kernel=kernel)
    return solver, k


@pytest.mark.parametrize("kernel", ["cpu", "tiled"])
def test_plane_wave_phase(kernel: str) -> None:
    solver, k = _plane_wave_solver(kernel)
    before = solver.state.interior.clone()
    assert solver.norm2() == pytest.approx(1.0, abs=1e-12)

    solver.evolve(1)

    assert solver.norm2() == pytest.approx(1.0, abs=1e-9)
    expected = np.exp(-1j * (1.0 - math.cos(k)) * 1e-3)
    ratio = (solver.state.interior / before).numpy()
    assert np.max(np.abs(ratio - expected)) < 1e-7


def test_plane_wave_kinetic_energy() -> None:
    solver, k = _plane_wave_solver()
    energy = solver.energy_components()
    assert energy.kinetic == pytest.approx(1.0 - math.cos(k), abs=1e-12)
    assert energy.potential == pytest.approx(0.0, abs=1e-15)
    assert energy.interaction == 0.0


def test_harmonic_ground_state_convergence() -> None:
    lattice = Lattice(32, 32, length_x=16.0, length_y=16.0)
    ham = Hamiltonian(lattice, potential=get_potential("harmonic", center_x=8.0, center_y=8.0))
    state = State(lattice)
    state.init_state(_gaussian(9.0, 8.0, sigma=1.5))
    state.normalize()
    solver = Solver(lattice, state, ham, 0.01, config=SolverConfig(normalization_period=10))

    initial = solver.total_energy()
    solver.evolve(1000, imag_time=True)
    converged = solver.total_energy()
    assert converged < initial
    assert converged == pytest.approx(1.0, abs=0.05)
    assert solver.norm2() == pytest.approx(1.0, abs=1e-12)

    solver.evolve(100, imag_time=True)
    assert solver.total_energy() >= converged - 1e-6
    mx, my = solver.mean_position()
    assert mx == pytest.approx(8.0, abs=1e-3)
    assert my == pytest.approx(8.0, abs=1e-3)


def test_real_time_conserves_norm_with_interaction_and_rotation() -> None:
    lattice = Lattice(24, 24, length_x=12.0, length_y=12.0, angular_velocity=0.3)
    ham = Hamiltonian(
        lattice,
        coupling=5.0,
        potential=get_potential("double_well", center_x=6.0, center_y=6.0, separation=3.0),
    )
    state = State(lattice)
    state.init_state(_gaussian(5.0, 6.5))
    state.normalize()
    solver = Solver(lattice, state, ham, 0.005, config=SolverConfig(check_period=7))
    solver.evolve(50)
    assert solver.norm2() == pytest.approx(1.0, abs=1e-10)
    assert solver.last_norm == pytest.approx(1.0, abs=1e-10)


def test_renormalisation_happens_after_last_step() -> None:
    lattice = Lattice(16, 16)
    state = State(lattice)
    state.init_state(_gaussian(8.0, 8.0))
    state.normalize()
    solver = Solver(lattice, state, Hamiltonian(lattice, potential=2.0), 0.05, config=SolverConfig(normalization_period=10))
    solver.evolve(4, imag_time=True)
    # a constant potential damps every imaginary-time step
    assert solver.last_norm < 1.0
    assert solver.norm2() == pytest.approx(1.0, abs=1e-12)


def test_zero_iterations_is_a_no_op() -> None:
    solver, _ = _plane_wave_solver()
    before = solver.state.psi.clone()
    solver.evolve(0)
    assert torch.equal(solver.state.psi, before)
    assert solver.iterations == 0
    assert solver.elapsed_time == 0.0


def test_negative_iterations_are_rejected() -> None:
    solver, _ = _plane_wave_solver()
    with pytest.raises(ConfigurationError):
        solver.evolve(-1)


def test_elapsed_time_is_cumulative() -> None:
    solver, _ = _plane_wave_solver()
    solver.evolve(3)
    solver.evolve(2, imag_time=True)
    assert solver.iterations == 5
    assert solver.elapsed_time == pytest.approx(5e-3)
    assert solver.state.time == pytest.approx(5e-3)

    snap = solver.snapshot(label="after-5")
    assert snap.label == "after-5"
    assert snap.imag_time is True
    assert snap.iterations == 5
    assert snap.psi.shape == (64, 64)
    assert np.array_equal(snap.psi, solver.state.interior.numpy())
    assert snap.norm2 == pytest.approx(1.0, abs=1e-12)


def test_kernel_is_fixed_for_the_run() -> None:
    solver, _ = _plane_wave_solver()
    solver.set_kernel("cpu")
    with pytest.raises(ConfigurationError):
        solver.set_kernel("tiled")


def test_non_finite_state_aborts() -> None:
    lattice = Lattice(8, 8)
    state = State(lattice)
    state.init_state(lambda x, y: 1.0)
    transport = RecordingTransport()
    solver = Solver(lattice, state, Hamiltonian(lattice), 0.1, transport=transport)
    state.interior[3, 3] = complex(float("nan"), 0.0)
    with pytest.raises(NumericalError):
        solver.evolve(2)
    assert len(transport.aborts) == 1
    assert solver.iterations == 1


@pytest.mark.parametrize(
    "kwargs",
    [dict(normalization_period=0), dict(check_period=0), dict(tile_shape=(0, 4))],
)
def test_invalid_solver_config(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        SolverConfig(**kwargs)


def test_invalid_solver_arguments() -> None:
    lattice = Lattice(8)
    state = State(lattice)
    ham = Hamiltonian(lattice)
    with pytest.raises(ConfigurationError):
        Solver(lattice, state, ham, 0.0)
    with pytest.raises(ConfigurationError):
        Solver(lattice, state, ham, 0.1, kernel="fortran")
    with pytest.raises(ConfigurationError):
        Solver(lattice, state, ham, 0.1, transport=ThreadGroup(2).transport(1))
