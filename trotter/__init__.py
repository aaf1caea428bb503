"""Distributed Trotter-Suzuki evolution of a 2D single-particle wavefunction."""

from .console import console
from .distributed import LoopbackTransport, ThreadGroup, ThreadTransport, TorchDistributedTransport, Transport
from .errors import CommunicationError, ConfigurationError, DomainError, NumericalError, TrotterError
from .hamiltonian import Hamiltonian
from .kernels import KERNELS, available_kernels
from .lattice import HALO, Lattice
from .observables import EnergyComponents
from .potentials import (
    const_potential,
    constant_potential,
    double_well_potential,
    get_potential,
    harmonic_potential,
)
from .snapshot import Snapshot
from .solver import Solver, SolverConfig
from .state import State

__version__ = "0.1.0"

__all__ = [
    "CommunicationError",
    "ConfigurationError",
    "DomainError",
    "EnergyComponents",
    "HALO",
    "Hamiltonian",
    "KERNELS",
    "Lattice",
    "LoopbackTransport",
    "NumericalError",
    "Snapshot",
    "Solver",
    "SolverConfig",
    "State",
    "ThreadGroup",
    "ThreadTransport",
    "TorchDistributedTransport",
    "Transport",
    "TrotterError",
    "available_kernels",
    "console",
    "const_potential",
    "constant_potential",
    "double_well_potential",
    "get_potential",
    "harmonic_potential",
]
