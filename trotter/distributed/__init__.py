from .halo import HaloExchanger
from .runtime import (
    FACES,
    NO_NEIGHBOR,
    OPPOSITE_FACE,
    LoopbackTransport,
    RankConfig,
    ThreadGroup,
    ThreadTransport,
    TorchDistributedTransport,
    Transport,
    resolve_transport,
)
from .topology import CartesianTopology, axis_bounds, balanced_process_grid

__all__ = [
    "CartesianTopology",
    "FACES",
    "HaloExchanger",
    "LoopbackTransport",
    "NO_NEIGHBOR",
    "OPPOSITE_FACE",
    "RankConfig",
    "ThreadGroup",
    "ThreadTransport",
    "TorchDistributedTransport",
    "Transport",
    "axis_bounds",
    "balanced_process_grid",
    "resolve_transport",
]
