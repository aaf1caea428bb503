from __future__ import annotations

import numpy as np
import pytest
import torch

from trotter import Hamiltonian, Lattice, LoopbackTransport, State, available_kernels
from trotter.distributed import HaloExchanger
from trotter.errors import ConfigurationError
from trotter.kernels import CPUKernel, GPUKernel, TiledKernel, build_coefficients, create_kernel


def _random_state(lattice: Lattice, seed: int = 0) -> State:
    rng = np.random.default_rng(seed)
    values = rng.normal(size=lattice.shape) + 1j * rng.normal(size=lattice.shape)
    state = State(lattice)
    state.init_from_array(values)
    state.normalize()
    return state


def _hamiltonian(lattice: Lattice, *, rotating: bool) -> Hamiltonian:
    cx = 0.5 * lattice.length_x
    cy = 0.5 * lattice.length_y
    return Hamiltonian(
        lattice,
        mass=1.3,
        coupling=0.7,
        angular_velocity=0.4 if rotating else 0.0,
        potential=lambda x, y: 0.1 * ((x - cx) ** 2 + 0.5 * (y - cy) ** 2),
    )


@pytest.mark.parametrize("imag_time", [False, True])
@pytest.mark.parametrize(
    "periodic,rotating",
    [((False, False), True), ((True, True), False), ((True, False), False)],
)
@pytest.mark.parametrize("tile_shape", [(5, 7), (64, 64)])
def test_tiled_matches_cpu(
    imag_time: bool, periodic: tuple[bool, bool], rotating: bool, tile_shape: tuple[int, int]
) -> None:
    lattice = Lattice(18, 22, length_x=6.0, length_y=5.0, periodic_x=periodic[0], periodic_y=periodic[1])
    ham = _hamiltonian(lattice, rotating=rotating)
    a = _random_state(lattice)
    b = a.copy()
    cpu = CPUKernel(HaloExchanger(lattice, LoopbackTransport()))
    tiled = TiledKernel(HaloExchanger(lattice, LoopbackTransport()), tile_shape=tile_shape)
    for _ in range(5):
        cpu.step(a, ham, 0.01, imag_time=imag_time)
        tiled.step(b, ham, 0.01, imag_time=imag_time)
    assert a.time == pytest.approx(0.05)
    assert b.time == pytest.approx(0.05)
    assert torch.allclose(a.interior, b.interior, rtol=0.0, atol=1e-12)


@pytest.mark.parametrize("periodic", [False, True])
def test_real_time_step_is_unitary(periodic: bool) -> None:
    lattice = Lattice(16, 16, periodic_x=periodic, periodic_y=periodic)
    ham = Hamiltonian(lattice, angular_velocity=0.0 if periodic else 0.3, potential=lambda x, y: 0.01 * x * y)
    state = _random_state(lattice, seed=3)
    kernel = CPUKernel(HaloExchanger(lattice, LoopbackTransport()))
    for _ in range(20):
        kernel.step(state, ham, 0.05)
    assert state.norm2() == pytest.approx(1.0, abs=1e-12)


def test_closed_boundary_bonds_are_identity() -> None:
    lattice = Lattice(4, 6)
    ham = Hamiltonian(lattice)
    coeffs = build_coefficients(lattice, ham, 0.1, imag_time=False, device=torch.device("cpu"))
    h = lattice.halo
    # x-even pairs start at extended column 0, i.e. global column -2.
    sweep = coeffs.sweeps[("x", 0)]
    assert sweep.start == 0
    left_global = np.arange(sweep.count) * 2 - h
    valid = (left_global >= 0) & (left_global + 1 <= lattice.cols - 1)
    diag = sweep.diag[0].numpy()
    off = sweep.forward[h].numpy()
    assert np.allclose(diag[~valid], 1.0)
    assert np.allclose(off[~valid], 0.0)
    assert np.allclose(np.abs(diag[valid]) ** 2 + np.abs(off[valid]) ** 2, 1.0)


def test_coefficient_cache_follows_potential_version() -> None:
    lattice = Lattice(8)
    ham = Hamiltonian(lattice)
    state = State(lattice)
    kernel = CPUKernel(HaloExchanger(lattice, LoopbackTransport()))
    first = kernel.coefficients(state, ham, 0.1, imag_time=False)
    assert kernel.coefficients(state, ham, 0.1, imag_time=False) is first
    ham.initialize_potential(1.0)
    assert kernel.coefficients(state, ham, 0.1, imag_time=False) is not first
    assert kernel.coefficients(state, ham, 0.1, imag_time=True) is not first


def test_unknown_kernel_name() -> None:
    lattice = Lattice(8)
    with pytest.raises(ConfigurationError):
        create_kernel("fortran", HaloExchanger(lattice, LoopbackTransport()))


def test_available_kernels() -> None:
    names = available_kernels()
    assert "cpu" in names and "tiled" in names
    assert ("gpu" in names) == torch.cuda.is_available()


@pytest.mark.skipif(torch.cuda.is_available(), reason="checks the missing-CUDA path")
def test_gpu_kernel_without_cuda() -> None:
    lattice = Lattice(8)
    with pytest.raises(ConfigurationError):
        GPUKernel(HaloExchanger(lattice, LoopbackTransport()))


@pytest.mark.skipif(not torch.cuda.is_available(), reason="requires CUDA")
def test_gpu_matches_cpu() -> None:
    lattice = Lattice(16, 20, periodic_x=True)
    ham = _hamiltonian(lattice, rotating=False)
    a = _random_state(lattice)
    b = a.copy().to("cuda")
    gpu_ham = _hamiltonian(lattice, rotating=False).to("cuda")
    cpu = CPUKernel(HaloExchanger(lattice, LoopbackTransport()))
    gpu = GPUKernel(HaloExchanger(lattice, LoopbackTransport()))
    for _ in range(3):
        cpu.step(a, ham, 0.01)
        gpu.step(b, gpu_ham, 0.01)
    assert torch.allclose(a.interior, b.interior.cpu(), atol=1e-10)


def test_tiled_kernel_rejects_device_mismatch() -> None:
    lattice = Lattice(8)
    state = State(lattice, device="meta")
    kernel = TiledKernel(HaloExchanger(lattice, LoopbackTransport()))
    with pytest.raises(ConfigurationError):
        kernel.step(state, Hamiltonian(lattice), 0.1)


def test_hamiltonian_constants_are_read_only() -> None:
    ham = Hamiltonian(Lattice(8), coupling=0.0)
    for name in ("mass", "coupling", "angular_velocity", "rot_coord_x", "rot_coord_y"):
        with pytest.raises(AttributeError):
            setattr(ham, name, 50.0)
    assert ham.coupling == 0.0


def test_cache_tokens_are_not_reused_after_collection() -> None:
    lattice = Lattice(8)
    tokens = {Hamiltonian(lattice).cache_token for _ in range(64)}
    assert len(tokens) == 64


@pytest.mark.parametrize("kernel_cls", [CPUKernel, TiledKernel])
def test_coefficients_are_rebuilt_for_a_new_hamiltonian(kernel_cls: type) -> None:
    lattice = Lattice(12, periodic_x=True, periodic_y=True)
    initial = _random_state(lattice, seed=3)
    kernel = kernel_cls(HaloExchanger(lattice, LoopbackTransport()))
    kernel.step(initial.copy(), Hamiltonian(lattice, coupling=0.0), 0.05)

    strong = Hamiltonian(lattice, coupling=50.0)
    reused = initial.copy()
    kernel.step(reused, strong, 0.05)
    fresh = initial.copy()
    kernel_cls(HaloExchanger(lattice, LoopbackTransport())).step(fresh, strong, 0.05)

    assert kernel.coefficients(reused, strong, 0.05, imag_time=False).nonlinear == pytest.approx(-0.05j * 50.0)
    assert torch.allclose(reused.interior, fresh.interior, rtol=0.0, atol=1e-14)
