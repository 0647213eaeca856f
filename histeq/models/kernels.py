"""
Device kernels for histogram equalization.

Every kernel takes the number of logical parallel tasks (``global_size``)
first and touches only the first ``global_size`` elements of its buffers.
The functions are written in the TorchScript subset so that
``KernelProgram`` can script them.
"""
import torch


def hist_atomic(global_size: int, plane: torch.Tensor, hist: torch.Tensor) -> None:
    # one task per sample; index_add_ lowers to atomicAdd on CUDA
    samples = plane[:global_size].to(torch.int64)
    hist.index_add_(0, samples, torch.ones_like(samples))


def scan_step(global_size: int, offset: int, src: torch.Tensor, dst: torch.Tensor) -> None:
    # one Hillis-Steele pass: reads src only, writes dst only
    carry = min(offset, global_size)
    dst[:carry] = src[:carry]
    if offset < global_size:
        dst[offset:global_size] = src[offset:global_size] + src[:global_size - offset]


def normalize_lut(
    global_size: int,
    total: int,
    levels: int,
    cumulative: torch.Tensor,
    lut: torch.Tensor,
) -> None:
    if total <= 0:
        identity = torch.arange(global_size, dtype=torch.int64, device=lut.device)
        lut[:global_size] = identity.clamp(0, levels - 1).to(lut.dtype)
        return
    # round(cdf * (levels - 1) / total), half up, in exact integer arithmetic
    cdf = cumulative[:global_size].to(torch.int64)
    scaled = torch.div(cdf * (2 * (levels - 1)) + total, 2 * total, rounding_mode="floor")
    lut[:global_size] = scaled.clamp(0, levels - 1).to(lut.dtype)


def apply_lut(global_size: int, plane: torch.Tensor, lut: torch.Tensor, out: torch.Tensor) -> None:
    out[:global_size] = lut[plane[:global_size].to(torch.int64)]


KERNELS = {
    "hist_atomic": hist_atomic,
    "scan_step": scan_step,
    "normalize_lut": normalize_lut,
    "apply_lut": apply_lut,
}
