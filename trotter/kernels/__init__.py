from __future__ import annotations

from ..distributed.halo import HaloExchanger
from ..errors import ConfigurationError
from .base import SWEEPS_FORWARD, SWEEPS_REVERSE, BondSweep, Kernel, StepCoefficients, build_coefficients
from .cpu import CPUKernel, GPUKernel
from .runtime import cuda_supported, get_device
from .tiled import TiledKernel

KERNELS: dict[str, type[Kernel]] = {
    CPUKernel.name: CPUKernel,
    GPUKernel.name: GPUKernel,
    TiledKernel.name: TiledKernel,
}


def available_kernels() -> list[str]:
    """Kernel names that can be instantiated in this process."""
    return [name for name in KERNELS if name != GPUKernel.name or cuda_supported()]


def create_kernel(
    name: str, exchanger: HaloExchanger, *, tile_shape: tuple[int, int] = (64, 64)
) -> Kernel:
    kernel_cls = KERNELS.get(name)
    if kernel_cls is None:
        raise ConfigurationError(f"unknown kernel {name!r}; expected one of {sorted(KERNELS)}")
    return kernel_cls.create(exchanger, tile_shape=tile_shape)


__all__ = [
    "BondSweep",
    "CPUKernel",
    "GPUKernel",
    "KERNELS",
    "Kernel",
    "SWEEPS_FORWARD",
    "SWEEPS_REVERSE",
    "StepCoefficients",
    "TiledKernel",
    "available_kernels",
    "build_coefficients",
    "create_kernel",
    "cuda_supported",
    "get_device",
]
