"""Error taxonomy for the Trotter-Suzuki solver.

- ``ConfigurationError``: detected while building a run (bad partition,
  unknown kernel, non-positive mass, kernel switch, ...). The run never starts.
- ``DomainError``: user-supplied fields (initial state, potential) are not
  finite or do not fit the lattice.
- ``NumericalError``: non-finite amplitudes (or a vanishing norm) appeared
  during evolution. Fatal for the whole process group.
- ``CommunicationError``: a peer failed to take part in a halo exchange or a
  collective. Fatal for the whole process group.
"""

from __future__ import annotations

__all__ = [
    "TrotterError",
    "ConfigurationError",
    "DomainError",
    "NumericalError",
    "CommunicationError",
]


class TrotterError(Exception):
    pass


class ConfigurationError(TrotterError, ValueError):
    pass


class DomainError(TrotterError, ValueError):
    pass


class NumericalError(TrotterError, RuntimeError):
    pass


class CommunicationError(TrotterError, RuntimeError):
    pass
