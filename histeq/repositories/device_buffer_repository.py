from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Iterator

import numpy as np
import torch

from ..errors import BackendError
from ..models.compute_device import ComputeDevice
from ..models.device_buffer import DeviceBuffer
from ..models.kernel_program import KernelProgram

logger = logging.getLogger(__name__)

_TORCH_DTYPES = {
    np.dtype(np.uint8): torch.uint8,
    np.dtype(np.int32): torch.int32,
    np.dtype(np.int64): torch.int64,
    np.dtype(np.float32): torch.float32,
}


@contextmanager
def _backend_call(operation: str) -> Iterator[None]:
    """Translate torch runtime failures into BackendError."""
    try:
        yield
    except RuntimeError as err:
        raise BackendError(operation, str(err), type(err).__name__) from err


class DeviceBufferRepository:
    """
    Compute backend on top of torch: allocation, host<->device copies,
    fills, kernel launches and barriers. Knows nothing about histograms.
    """

    def __init__(self, device: ComputeDevice | None = None, program: KernelProgram | None = None):
        self.device = device or ComputeDevice()
        self.program = program or KernelProgram()
        if not self.program.is_built:
            self.program.build()

    # ─── Buffers ───────────────────────────────────────────────────
    def allocate(self, name: str, count: int, dtype: torch.dtype) -> DeviceBuffer:
        if count < 0:
            raise BackendError("allocate", f"negative size {count} for buffer {name!r}")
        with _backend_call("allocate"):
            tensor = torch.empty(count, dtype=dtype, device=self.device.torch_device)
        buffer = DeviceBuffer(name=name, tensor=tensor)
        logger.debug(f"Allocated {name}: {count} x {dtype} ({buffer.nbytes} bytes)")
        return buffer

    def allocate_like(self, name: str, host: np.ndarray) -> DeviceBuffer:
        dtype = _TORCH_DTYPES.get(host.dtype)
        if dtype is None:
            raise BackendError("allocate", f"unsupported host dtype {host.dtype}")
        return self.allocate(name, host.size, dtype)

    def release(self, buffer: DeviceBuffer) -> None:
        buffer.tensor = None

    # ─── Transfers ─────────────────────────────────────────────────
    def write(self, buffer: DeviceBuffer, host: np.ndarray) -> None:
        """Blocking host → device copy of the whole buffer."""
        self._check_live(buffer, "write")
        flat = np.ascontiguousarray(host).reshape(-1)
        if flat.size != buffer.count:
            raise BackendError(
                "write", f"{buffer.name} holds {buffer.count} elements, got {flat.size}", "size_mismatch"
            )
        with _backend_call("write"):
            buffer.tensor.copy_(torch.from_numpy(flat))
            self.finish()

    def read(self, buffer: DeviceBuffer) -> np.ndarray:
        """Blocking device → host copy. Never aliases device memory."""
        self._check_live(buffer, "read")
        with _backend_call("read"):
            return buffer.tensor.detach().cpu().numpy().copy()

    def fill(self, buffer: DeviceBuffer, value: int = 0) -> None:
        self._check_live(buffer, "fill")
        with _backend_call("fill"):
            buffer.tensor.fill_(value)

    # ─── Execution ─────────────────────────────────────────────────
    def launch(self, kernel_name: str, global_size: int, *args) -> None:
        """
        Enqueue *kernel_name* over *global_size* tasks. DeviceBuffer
        arguments are passed as tensors, everything else as is.
        """
        kernel = self.program.kernel(kernel_name)
        call_args = []
        for arg in args:
            if isinstance(arg, DeviceBuffer):
                self._check_live(arg, f"launch {kernel_name}")
                call_args.append(arg.tensor)
            else:
                call_args.append(arg)
        with _backend_call(f"launch {kernel_name}"):
            kernel(global_size, *call_args)

    def finish(self) -> None:
        """Block until everything on the current command queue has completed."""
        with _backend_call("finish"):
            if self.device.type == "cuda":
                torch.cuda.current_stream(self.device.torch_device).synchronize()
            elif self.device.type == "mps":
                torch.mps.synchronize()

    @contextmanager
    def command_queue(self) -> Iterator[None]:
        """
        Give the calling thread its own in-order queue. On CUDA this is a
        dedicated stream, elsewhere commands already run in issue order.
        """
        if self.device.type != "cuda":
            yield
            return
        with _backend_call("create_queue"):
            stream = torch.cuda.Stream(device=self.device.torch_device)
        with torch.cuda.stream(stream):
            yield

    # ─── Internal helpers ──────────────────────────────────────────
    @staticmethod
    def _check_live(buffer: DeviceBuffer, operation: str) -> None:
        if buffer.released:
            raise BackendError(operation, f"buffer {buffer.name!r} was already released", "released")
