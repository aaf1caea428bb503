from __future__ import annotations

import numpy as np
import pytest
import torch

from trotter import Hamiltonian, Lattice, get_potential, harmonic_potential
from trotter.errors import ConfigurationError, DomainError


def test_hopping_and_onsite() -> None:
    lattice = Lattice(10, 20, length_x=5.0, length_y=20.0)
    ham = Hamiltonian(lattice, mass=2.0)
    tx, ty = ham.hopping
    assert tx == pytest.approx(1.0 / (2.0 * 2.0 * 0.25**2))
    assert ty == pytest.approx(1.0 / (2.0 * 2.0 * 2.0**2))
    assert ham.onsite == pytest.approx(2.0 * (tx + ty))


@pytest.mark.parametrize("mass", [0.0, -1.0, float("nan")])
def test_non_positive_mass_is_rejected(mass: float) -> None:
    with pytest.raises(ConfigurationError):
        Hamiltonian(Lattice(4), mass=mass)


def test_potential_forms() -> None:
    lattice = Lattice(8, 8)
    ham = Hamiltonian(lattice)
    assert torch.count_nonzero(ham.potential) == 0
    version = ham.version

    ham.initialize_potential(3.5)
    assert torch.allclose(ham.potential, torch.full((8, 8), 3.5, dtype=torch.float64))
    assert ham.version == version + 1

    ham.initialize_potential(harmonic_potential(1.0, center_x=4.0, center_y=4.0))
    X, Y = lattice.coordinates()
    expected = 0.5 * ((X - 4.0) ** 2 + (Y - 4.0) ** 2)
    assert np.allclose(ham.potential.numpy(), expected)


def test_non_finite_potential_is_rejected() -> None:
    with pytest.raises(DomainError):
        Hamiltonian(Lattice(4), potential=lambda x, y: np.where(x > 2, np.inf, 0.0))


def test_rotation_adds_centrifugal_term_and_phases() -> None:
    lattice = Lattice(8, 8, angular_velocity=0.5)
    ham = Hamiltonian(lattice)
    assert ham.rot_coord_x == pytest.approx(4.0)
    X, Y = lattice.coordinates()
    centrifugal = 0.5 * 0.25 * ((X - 4.0) ** 2 + (Y - 4.0) ** 2)
    assert np.allclose(ham.effective_potential.numpy(), -centrifugal)

    phi_x, phi_y = ham.bond_phases()
    assert phi_x.shape == (lattice.extended_shape[0],)
    assert phi_y.shape == (lattice.extended_shape[1],)
    rows, cols = lattice.global_indices(include_halo=True)
    assert np.allclose(phi_x.numpy(), -0.5 * (rows - 4.0))
    assert np.allclose(phi_y.numpy(), 0.5 * (cols - 4.0))


def test_get_potential_validates_names() -> None:
    assert callable(get_potential("double_well", separation=3.0))
    with pytest.raises(ConfigurationError):
        get_potential("morse")
    with pytest.raises(ConfigurationError):
        get_potential("harmonic", stiffness=2.0)


@pytest.mark.filterwarnings("error")
def test_scalar_potential_is_a_writable_copy() -> None:
    ham = Hamiltonian(Lattice(6, 4), potential=lambda x, y: 1.0)
    ham.potential[0, 0] = 2.0
    assert ham.potential[0, 0].item() == 2.0
    assert ham.potential[1, 1].item() == 1.0
