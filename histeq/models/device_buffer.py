from __future__ import annotations
from dataclasses import dataclass
import torch


@dataclass
class DeviceBuffer:
    """
    A device-resident allocation. Owned by one channel pipeline and
    released by it once the host has read back what it needs.
    """
    name: str
    tensor: torch.Tensor | None

    @property
    def released(self) -> bool:
        return self.tensor is None

    @property
    def count(self) -> int:
        return 0 if self.tensor is None else self.tensor.numel()

    @property
    def nbytes(self) -> int:
        if self.tensor is None:
            return 0
        return self.tensor.numel() * self.tensor.element_size()
