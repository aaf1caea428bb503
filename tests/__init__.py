"""Test suite for the trotter solver.

This package contains:
- Unit tests for the partition, lattice, state and Hamiltonian layers
- Kernel equivalence and unitarity checks
- Solver scenarios (plane-wave phase, harmonic ground state)
- Multi-rank runs over the in-process thread transport
"""
