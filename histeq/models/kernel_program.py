# models/kernel_program.py
from __future__ import annotations
import logging
import os
import warnings
from typing import Callable, Dict, List

import torch
from dotenv import load_dotenv

from ..errors import CompileError
from .kernels import KERNELS

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

REQUIRED_KERNELS = ("hist_atomic", "scan_step", "normalize_lut", "apply_lut")


class KernelProgram:
    """
    The set of device kernels the pipeline launches.

    build() checks that every required kernel is present and, with JIT
    enabled, scripts each one with TorchScript. Any problem ends up in a
    single build log raised as CompileError. There is no fallback.
    """

    def __init__(self, sources: Dict[str, Callable] | None = None, jit: bool | None = None):
        self.sources = dict(KERNELS if sources is None else sources)
        if jit is None:
            jit = os.getenv("HISTEQ_JIT_KERNELS", "0") == "1"
        self.jit = jit
        self.build_log = ""
        self._kernels: Dict[str, Callable] = {}

    @property
    def is_built(self) -> bool:
        return bool(self._kernels)

    def build(self) -> "KernelProgram":
        log: List[str] = []
        kernels: Dict[str, Callable] = {}

        for name in REQUIRED_KERNELS:
            source = self.sources.get(name)
            if source is None:
                log.append(f"error: kernel '{name}' not found in program")
                continue
            if not callable(source):
                log.append(f"error: kernel '{name}' is not callable")
                continue
            if not self.jit:
                kernels[name] = source
                continue
            try:
                with warnings.catch_warnings():
                    # deprecated in favour of torch.compile
                    warnings.simplefilter("ignore", FutureWarning)
                    kernels[name] = torch.jit.script(source)
            except Exception as err:  # TorchScript raises many unrelated types
                log.append(f"error: kernel '{name}' failed to compile:\n{err}")

        self.build_log = "\n".join(log)
        if log:
            logger.debug(f"Build log:\n{self.build_log}")
            raise CompileError(self.build_log)

        self._kernels = kernels
        logger.debug(f"Kernel program built ({'TorchScript' if self.jit else 'eager'}): "
                     f"{', '.join(sorted(kernels))}")
        return self

    def kernel(self, name: str) -> Callable:
        if not self.is_built:
            self.build()
        try:
            return self._kernels[name]
        except KeyError:
            raise CompileError(f"error: kernel '{name}' not found in program") from None
