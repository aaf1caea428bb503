from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import queue
import threading
import time
from typing import Any, Literal

import torch
import torch.distributed as dist

from ..console import console
from ..errors import CommunicationError, ConfigurationError

Face = Literal["x-", "x+", "y-", "y+"]
ExchangePhase = Literal["halo_x", "halo_y"]

FACES: tuple[Face, ...] = ("x-", "x+", "y-", "y+")
OPPOSITE_FACE: dict[Face, Face] = {
    "x-": "x+",
    "x+": "x-",
    "y-": "y+",
    "y+": "y-",
}
NO_NEIGHBOR = -1

_PHASE_ID: dict[ExchangePhase, int] = {
    "halo_x": 1,
    "halo_y": 2,
}
_FACE_ID: dict[Face, int] = {face: idx for idx, face in enumerate(FACES)}
_TICK_WRAP = 1_000_000


@dataclass(frozen=True)
class RankConfig:
    rank_id: int
    neighbor_ids: dict[Face, int]
    tile_coords: tuple[int, int]
    tile_origin: tuple[int, int]
    local_grid_size: tuple[int, int]
    halo_thickness: int


class Transport(ABC):
    @abstractmethod
    def exchange_halos(
        self,
        *,
        tick: int,
        phase: ExchangePhase,
        send_buffers: dict[Face, torch.Tensor],
        neighbors: dict[Face, int],
        device: torch.device,
    ) -> dict[Face, torch.Tensor]:
        """Send each face buffer to its neighbour and return what arrived.

        The tensor returned under ``face`` is the buffer the neighbour at
        ``face`` sent towards this rank. Faces without a neighbour are absent.
        """
        raise NotImplementedError

    @abstractmethod
    def allreduce_sum(self, tensor: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    @abstractmethod
    def all_gather_object(self, obj: Any) -> list[Any]:
        raise NotImplementedError

    @abstractmethod
    def abort(self, reason: str) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def rank(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def world_size(self) -> int:
        raise NotImplementedError


class LoopbackTransport(Transport):
    @property
    def rank(self) -> int:
        return 0

    @property
    def world_size(self) -> int:
        return 1

    def exchange_halos(
        self,
        *,
        tick: int,
        phase: ExchangePhase,
        send_buffers: dict[Face, torch.Tensor],
        neighbors: dict[Face, int],
        device: torch.device,
    ) -> dict[Face, torch.Tensor]:
        del tick, phase
        received: dict[Face, torch.Tensor] = {}
        for face in send_buffers:
            neighbor = neighbors.get(face, NO_NEIGHBOR)
            if neighbor < 0:
                continue
            if neighbor != 0:
                raise CommunicationError(
                    f"loopback transport cannot reach rank {neighbor} (face {face})"
                )
            received[face] = send_buffers[OPPOSITE_FACE[face]].clone().to(device)
        return received

    def allreduce_sum(self, tensor: torch.Tensor) -> torch.Tensor:
        return tensor.clone()

    def all_gather_object(self, obj: Any) -> list[Any]:
        return [obj]

    def abort(self, reason: str) -> None:
        del reason


class ThreadGroup:
    """A process group whose ranks are threads of the current interpreter.

    Point-to-point messages go through per-(src, dst, tag) queues; collectives
    use a shared barrier. A timeout or an ``abort`` from any rank breaks the
    group and every blocked rank raises ``CommunicationError``.
    """

    def __init__(self, world_size: int, *, timeout: float = 30.0) -> None:
        if world_size < 1:
            raise ValueError(f"world_size must be positive, got {world_size}")
        self.world_size = int(world_size)
        self.timeout = float(timeout)
        self._lock = threading.Lock()
        self._mailboxes: dict[tuple[int, int, int], queue.Queue] = {}
        self._barrier = threading.Barrier(self.world_size)
        self._slots: list[Any] = [None] * self.world_size
        self._abort_reason: str | None = None

    def transport(self, rank: int) -> ThreadTransport:
        if rank < 0 or rank >= self.world_size:
            raise ValueError(f"rank out of range: {rank}")
        return ThreadTransport(self, rank)

    @property
    def aborted(self) -> bool:
        return self._abort_reason is not None

    def abort(self, reason: str) -> None:
        with self._lock:
            if self._abort_reason is None:
                self._abort_reason = reason
        self._barrier.abort()

    @property
    def open_mailboxes(self) -> int:
        with self._lock:
            return len(self._mailboxes)

    def mailbox(self, src: int, dst: int, tag: int) -> queue.Queue:
        with self._lock:
            return self._mailboxes.setdefault((src, dst, tag), queue.Queue())

    def receive(self, src: int, dst: int, tag: int) -> Any:
        box = self.mailbox(src, dst, tag)
        deadline = time.monotonic() + self.timeout
        while True:
            self._raise_if_aborted()
            try:
                message = box.get(timeout=0.05)
            except queue.Empty:
                if time.monotonic() > deadline:
                    self.abort(f"rank {dst} timed out waiting for rank {src}")
                    raise CommunicationError(
                        f"rank {dst} timed out waiting for rank {src} (tag {tag})"
                    ) from None
                continue
            with self._lock:
                self._mailboxes.pop((src, dst, tag), None)
            return message

    def collect(self, rank: int, value: Any) -> list[Any]:
        self._raise_if_aborted()
        self._slots[rank] = value
        self._wait()
        values = list(self._slots)
        self._wait()
        return values

    def _wait(self) -> None:
        try:
            self._barrier.wait(timeout=self.timeout)
        except threading.BrokenBarrierError as exc:
            reason = self._abort_reason or "collective timed out"
            raise CommunicationError(f"process group broken: {reason}") from exc

    def _raise_if_aborted(self) -> None:
        if self._abort_reason is not None:
            raise CommunicationError(f"process group aborted: {self._abort_reason}")


class ThreadTransport(Transport):
    def __init__(self, group: ThreadGroup, rank: int) -> None:
        self._group = group
        self._rank = int(rank)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._group.world_size

    def exchange_halos(
        self,
        *,
        tick: int,
        phase: ExchangePhase,
        send_buffers: dict[Face, torch.Tensor],
        neighbors: dict[Face, int],
        device: torch.device,
    ) -> dict[Face, torch.Tensor]:
        for face, tensor in send_buffers.items():
            neighbor = neighbors.get(face, NO_NEIGHBOR)
            if neighbor < 0:
                continue
            tag = _message_tag(tick=tick, phase=phase, face=face)
            self._group.mailbox(self._rank, neighbor, tag).put(tensor.detach().clone())
        received: dict[Face, torch.Tensor] = {}
        for face in send_buffers:
            neighbor = neighbors.get(face, NO_NEIGHBOR)
            if neighbor < 0:
                continue
            tag = _message_tag(tick=tick, phase=phase, face=OPPOSITE_FACE[face])
            received[face] = self._group.receive(neighbor, self._rank, tag).to(device)
        return received

    def allreduce_sum(self, tensor: torch.Tensor) -> torch.Tensor:
        values = self._group.collect(self._rank, tensor.detach().cpu().clone())
        return torch.stack(values).sum(dim=0).to(tensor.device)

    def all_gather_object(self, obj: Any) -> list[Any]:
        return self._group.collect(self._rank, obj)

    def abort(self, reason: str) -> None:
        self._group.abort(f"rank {self._rank}: {reason}")


class TorchDistributedTransport(Transport):
    def __init__(
        self,
        process_group: dist.ProcessGroup | None = None,
    ) -> None:
        if not dist.is_available() or not dist.is_initialized():
            raise CommunicationError("torch.distributed must be initialized first")
        self._group = process_group
        self._backend = dist.get_backend(process_group)
        self._rank = dist.get_rank(process_group)
        self._world_size = dist.get_world_size(process_group)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._world_size

    def exchange_halos(
        self,
        *,
        tick: int,
        phase: ExchangePhase,
        send_buffers: dict[Face, torch.Tensor],
        neighbors: dict[Face, int],
        device: torch.device,
    ) -> dict[Face, torch.Tensor]:
        recv_buffers: dict[Face, torch.Tensor] = {}
        requests: list[dist.Work] = []
        local: dict[Face, torch.Tensor] = {}
        was_complex: dict[Face, bool] = {}
        for face in FACES:
            neighbor = neighbors.get(face, NO_NEIGHBOR)
            if neighbor < 0 or face not in send_buffers:
                continue
            if neighbor == self._rank:
                local[face] = send_buffers[OPPOSITE_FACE[face]].clone()
                continue
            was_complex[face] = send_buffers[face].is_complex()
            send_tensor = _as_real(send_buffers[face].contiguous())
            if not self._use_direct_device_transfer(send_tensor):
                send_tensor = send_tensor.to("cpu", non_blocking=False)
            recv_buf = torch.empty_like(send_tensor)
            tag_out = _message_tag(tick=tick, phase=phase, face=face)
            tag_in = _message_tag(tick=tick, phase=phase, face=OPPOSITE_FACE[face])
            try:
                send_req = dist.isend(
                    tensor=send_tensor,
                    dst=neighbor,
                    tag=tag_out,
                    group=self._group,
                )
                recv_req = dist.irecv(
                    tensor=recv_buf,
                    src=neighbor,
                    tag=tag_in,
                    group=self._group,
                )
            except RuntimeError as exc:
                raise CommunicationError(
                    f"halo exchange with rank {neighbor} failed ({face})"
                ) from exc
            if send_req is not None:
                requests.append(send_req)
            if recv_req is not None:
                requests.append(recv_req)
            recv_buffers[face] = recv_buf
        try:
            for req in requests:
                req.wait()
        except RuntimeError as exc:
            raise CommunicationError(f"halo exchange failed at tick {tick}") from exc
        received: dict[Face, torch.Tensor] = {}
        for face, recv in recv_buffers.items():
            if was_complex[face]:
                recv = torch.view_as_complex(recv)
            received[face] = recv.to(device, non_blocking=False)
        for face, tensor in local.items():
            received[face] = tensor.to(device)
        return received

    def allreduce_sum(self, tensor: torch.Tensor) -> torch.Tensor:
        work = tensor.detach().clone()
        if not self._use_direct_device_transfer(work):
            work = work.to("cpu")
        try:
            dist.all_reduce(work, op=dist.ReduceOp.SUM, group=self._group)
        except RuntimeError as exc:
            raise CommunicationError("all_reduce failed") from exc
        return work.to(tensor.device)

    def all_gather_object(self, obj: Any) -> list[Any]:
        gathered: list[Any] = [None for _ in range(self._world_size)]
        try:
            dist.all_gather_object(gathered, obj, group=self._group)
        except RuntimeError as exc:
            raise CommunicationError("all_gather_object failed") from exc
        return gathered

    def abort(self, reason: str) -> None:
        console.error(f"Aborting process group from rank {self._rank}", detail=reason)
        try:
            dist.destroy_process_group(self._group)
        except (RuntimeError, ValueError) as exc:
            console.error("Process group teardown failed", detail=str(exc))

    def _use_direct_device_transfer(self, tensor: torch.Tensor) -> bool:
        backend = str(self._backend).lower()
        return tensor.device.type == "cuda" and backend == "nccl"


def _message_tag(*, tick: int, phase: ExchangePhase, face: Face) -> int:
    return (tick % _TICK_WRAP) * 100 + _PHASE_ID[phase] * 10 + _FACE_ID[face]


def _as_real(tensor: torch.Tensor) -> torch.Tensor:
    if tensor.is_complex():
        return torch.view_as_real(tensor).contiguous()
    return tensor


def resolve_transport(transport: Transport | None, *, world_size: int, rank: int) -> Transport:
    """Return ``transport`` checked against the lattice partition.

    A single-rank lattice falls back to ``LoopbackTransport``.
    """
    if transport is None:
        if world_size != 1:
            raise ConfigurationError(
                f"a transport is required for a lattice split across {world_size} workers"
            )
        return LoopbackTransport()
    if transport.world_size != world_size or transport.rank != rank:
        raise ConfigurationError(
            "transport does not match the lattice partition: "
            f"transport rank {transport.rank}/{transport.world_size}, lattice rank {rank}/{world_size}"
        )
    return transport
