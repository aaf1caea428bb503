#!/usr/bin/env python3
"""Trotter-Suzuki example: a Gaussian wavepacket in a closed box.

Prepares a Gaussian packet, optionally relaxes it in imaginary time, then
evolves it in real time and reports norm, energy and mean position at every
snapshot.

Usage:
    python run.py                          # 256x256 box, cpu kernel
    python run.py --kernel tiled           # cache-blocked numpy kernel
    python run.py --imag-steps 200         # relax before real-time evolution
    torchrun --nproc-per-node 4 run.py     # one sub-domain per process
"""

from __future__ import annotations

import argparse
import os

import numpy as np
import torch
import torch.distributed as dist

from trotter import (
    Hamiltonian,
    Lattice,
    Solver,
    SolverConfig,
    State,
    TorchDistributedTransport,
    TrotterError,
    console,
    get_potential,
)


def _bootstrap(kernel: str) -> tuple[int, int, TorchDistributedTransport | None]:
    world_size = int(os.environ.get("WORLD_SIZE", "1"))
    if world_size == 1:
        return 0, 1, None
    backend = "nccl" if kernel == "gpu" else "gloo"
    dist.init_process_group(backend=backend)
    rank = dist.get_rank()
    if kernel == "gpu":
        torch.cuda.set_device(int(os.environ.get("LOCAL_RANK", "0")))
    return rank, world_size, TorchDistributedTransport()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Gaussian wavepacket in a box",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--grid", type=int, default=256, help="Points per side")
    parser.add_argument("--length", type=float, default=20.0, help="Physical side length")
    parser.add_argument("--dt", type=float, default=1e-3, help="Time step")
    parser.add_argument("--steps", type=int, default=1000, help="Real-time steps")
    parser.add_argument("--imag-steps", type=int, default=0, help="Imaginary-time steps before evolving")
    parser.add_argument("--snapshots", type=int, default=10, help="Number of reports during evolution")
    parser.add_argument("--kernel", type=str, default="cpu", help="cpu, gpu or tiled")
    parser.add_argument("--sigma", type=float, default=1.0, help="Packet width")
    parser.add_argument("--momentum", type=float, default=2.0, help="Packet momentum along x")
    parser.add_argument("--omega", type=float, default=0.0, help="Harmonic trap frequency (0 = free box)")
    parser.add_argument("--coupling", type=float, default=0.0, help="Contact interaction strength")
    args = parser.parse_args()

    rank, world_size, transport = _bootstrap(args.kernel)
    console.set_rank(rank)

    try:
        lattice = Lattice(
            args.grid,
            length_x=args.length,
            length_y=args.length,
            world_size=world_size,
            rank=rank,
        )
        center = 0.5 * args.length
        potential = None
        if args.omega > 0.0:
            potential = get_potential("harmonic", omega_x=args.omega, center_x=center, center_y=center)
        hamiltonian = Hamiltonian(lattice, coupling=args.coupling, potential=potential)

        def gaussian(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            r2 = (x - 0.4 * args.length) ** 2 + (y - center) ** 2
            return np.exp(-r2 / (4.0 * args.sigma**2) + 1j * args.momentum * x)

        state = State(lattice)
        state.init_state(gaussian)
        state.normalize(transport)

        solver = Solver(
            lattice,
            state,
            hamiltonian,
            args.dt,
            kernel=args.kernel,
            transport=transport,
            config=SolverConfig(check_period=10, verbose=True),
        )

        if args.imag_steps > 0:
            with console.spinner(f"Relaxing for {args.imag_steps} imaginary-time steps..."):
                solver.evolve(args.imag_steps, imag_time=True)
            console.success("Relaxed", detail=f"E={solver.total_energy():.6f}")

        chunk = max(1, args.steps // max(1, args.snapshots))
        done = 0
        while done < args.steps:
            n = min(chunk, args.steps - done)
            solver.evolve(n)
            done += n
            snap = solver.snapshot(label=f"t={solver.elapsed_time:.4f}")
            energy = solver.energy_components()
            mx, my = solver.mean_position()
            console.info(
                f"step {snap.iterations:>6d}",
                detail=(
                    f"norm={snap.norm2:.10f} E={energy.total:.6f} "
                    f"(K={energy.kinetic:.4f} V={energy.potential:.4f} U={energy.interaction:.4f}) "
                    f"<x>={mx:.4f} <y>={my:.4f}"
                ),
            )
        console.success("Done", detail=f"{solver.iterations} steps, t={solver.elapsed_time:.4f}")
    except TrotterError as exc:
        console.error("Run failed", detail=str(exc))
        raise SystemExit(1) from exc
    finally:
        if world_size > 1 and dist.is_initialized():
            dist.destroy_process_group()


if __name__ == "__main__":
    main()
