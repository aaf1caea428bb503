"""Backend availability detection.

The reference kernel runs anywhere torch runs. The ``gpu`` kernel needs a
CUDA device visible to torch; the ``tiled`` kernel works on host memory
through numpy and is always available.
"""

from __future__ import annotations

import torch

__all__ = [
    "cuda_supported",
    "get_device",
]


def cuda_supported() -> bool:
    """Whether torch can allocate on a CUDA device in this process."""
    try:
        return bool(torch.cuda.is_available())
    except RuntimeError:
        return False


def get_device(kernel: str) -> torch.device:
    """Device a kernel of the given name runs on."""
    if kernel == "gpu":
        return torch.device("cuda")
    return torch.device("cpu")
