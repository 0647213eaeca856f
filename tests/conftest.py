import numpy as np
import pytest

from histeq.errors import BackendError
from histeq.models.compute_device import ComputeDevice
from histeq.models.kernel_program import KernelProgram
from histeq.repositories.device_buffer_repository import DeviceBufferRepository


class FailingBackend(DeviceBufferRepository):
    """CPU backend whose n-th launch of one kernel is rejected."""

    def __init__(self, fail_kernel: str, fail_on_call: int = 1):
        super().__init__(ComputeDevice("cpu"), KernelProgram(jit=False))
        self.fail_kernel = fail_kernel
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.allocated = []

    def allocate(self, name, count, dtype):
        buffer = super().allocate(name, count, dtype)
        self.allocated.append(buffer)
        return buffer

    def launch(self, kernel_name, global_size, *args):
        if kernel_name == self.fail_kernel:
            self.calls += 1
            if self.calls == self.fail_on_call:
                raise BackendError(f"launch {kernel_name}", "out of resources", "RuntimeError")
        super().launch(kernel_name, global_size, *args)


class CountingBackend(DeviceBufferRepository):
    """CPU backend that records every kernel launch."""

    def __init__(self):
        super().__init__(ComputeDevice("cpu"), KernelProgram(jit=False))
        self.launches = []

    def launch(self, kernel_name, global_size, *args):
        self.launches.append((kernel_name, global_size, args))
        super().launch(kernel_name, global_size, *args)


@pytest.fixture
def backend():
    return DeviceBufferRepository(ComputeDevice("cpu"), KernelProgram(jit=False))


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
