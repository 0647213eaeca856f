# models/compute_device.py
from __future__ import annotations
import logging
import os
import threading
from typing import Dict, List, Tuple

import torch
from dotenv import load_dotenv

from ..errors import BackendError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ComputeDevice:
    """
    Cached wrapper around a torch device.
    • One instance per device name per process.
    • "auto" picks CUDA on NVIDIA, MPS on Apple Silicon, CPU otherwise.
    """

    _instances: Dict[str, "ComputeDevice"] = {}
    _lock = threading.RLock()

    # ───────────────────────── cached ctor
    def __new__(cls, name: str | None = None):
        requested = cls._resolve(name or os.getenv("HISTEQ_DEVICE", "auto"))
        with cls._lock:
            if requested not in cls._instances:
                # "cuda" and "cuda:0" share one instance
                torch_device = cls._canonical(requested)
                key = str(torch_device)
                if key not in cls._instances:
                    instance = super().__new__(cls)
                    instance._init(torch_device)
                    cls._instances[key] = instance
                cls._instances[requested] = cls._instances[key]
            return cls._instances[requested]

    # ───────────────────────── actual init
    def _init(self, torch_device: torch.device):
        self.torch_device = torch_device
        if torch_device.type == "cuda":
            self.description = torch.cuda.get_device_name(torch_device.index)
        elif torch_device.type == "mps":
            self.description = "Apple Metal Performance Shaders"
        else:
            self.description = f"CPU ({torch.get_num_threads()} threads)"

        self.name = str(torch_device)
        logger.info(f"Running on {self.name}, {self.description}")

    @classmethod
    def _canonical(cls, name: str) -> torch.device:
        """Parse and check *name*, filling in the CUDA index."""
        try:
            torch_device = torch.device(name)
        except RuntimeError as err:
            raise BackendError("select_device", str(err), type(err).__name__) from err

        if torch_device.type == "cuda":
            if not torch.cuda.is_available():
                raise BackendError("select_device", f"{name} requested but CUDA is not available")
            index = torch_device.index or 0
            if index >= torch.cuda.device_count():
                raise BackendError("select_device", f"no CUDA device with index {index}")
            return torch.device("cuda", index)
        if torch_device.type == "mps":
            if not cls._mps_available():
                raise BackendError("select_device", "mps requested but MPS is not available")
            return torch.device("mps")
        if torch_device.type == "cpu":
            return torch.device("cpu")
        raise BackendError("select_device", f"unsupported device type {torch_device.type!r}")

    # ───────────────────────── helpers
    @staticmethod
    def _mps_available() -> bool:
        return hasattr(torch.backends, "mps") and torch.backends.mps.is_available()

    @classmethod
    def _resolve(cls, name: str) -> str:
        name = name.strip().lower()
        if name != "auto":
            return name
        # Priority: CUDA -> MPS -> CPU
        if torch.cuda.is_available():
            return "cuda:0"
        if cls._mps_available():
            return "mps"
        return "cpu"

    @property
    def type(self) -> str:
        return self.torch_device.type

    @classmethod
    def list_devices(cls) -> List[Tuple[str, str]]:
        """
        Returns:
            (name, description) for every device torch can run kernels on.
        """
        devices = [("cpu", f"CPU ({torch.get_num_threads()} threads)")]
        if torch.cuda.is_available():
            for index in range(torch.cuda.device_count()):
                devices.append((f"cuda:{index}", torch.cuda.get_device_name(index)))
        if cls._mps_available():
            devices.append(("mps", "Apple Metal Performance Shaders"))
        return devices

    def __repr__(self) -> str:
        return f"ComputeDevice({self.name!r})"
