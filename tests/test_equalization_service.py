from pathlib import Path

import numpy as np
import pytest
import torch

from histeq.errors import CompileError, InputError, PipelineError
from histeq.models.compute_device import ComputeDevice
from histeq.models.image import ColorMode, Image
from histeq.models.kernel_program import KernelProgram
from histeq.repositories.device_buffer_repository import DeviceBufferRepository
from histeq.services.channel_pipeline import ChannelPipeline
from histeq.services.equalization_service import EqualizationService
from tests.conftest import CountingBackend, FailingBackend


@pytest.fixture
def service(backend):
    return EqualizationService(backend=backend, parallel_channels=False)


def test_four_pixel_greyscale_scenario(service):
    img = Image(pixels=np.array([[0, 64], [128, 255]], dtype=np.uint8))

    result = service.equalize(img)

    assert result.mode is ColorMode.GREYSCALE
    channel = result.channel("Y")
    assert channel.histogram[[0, 64, 128, 255]].tolist() == [1, 1, 1, 1]
    assert channel.histogram.sum() == 4
    assert channel.cumulative[[0, 63, 64, 127, 128, 254, 255]].tolist() == [1, 1, 2, 2, 3, 3, 4]
    assert result.image.pixels.tolist() == [[64, 128], [191, 255]]


def test_black_image_stays_constant(service):
    img = Image(pixels=np.zeros((12, 9), dtype=np.uint8))

    result = service.equalize(img)

    channel = result.channel("Y")
    assert channel.histogram[0] == 108
    assert np.unique(result.image.pixels).size == 1
    # every pixel sits in the single occupied bin, whose cdf is the full count
    assert (result.image.pixels == 255).all()


@pytest.mark.parametrize("value", [0, 77, 255])
def test_flat_image(service, value):
    img = Image(pixels=np.full((5, 7), value, dtype=np.uint8))

    channel = service.equalize(img).channel("Y")

    assert channel.histogram[value] == 35
    assert channel.histogram.sum() == 35
    assert not channel.cumulative[:value].any()
    assert (channel.cumulative[value:] == 35).all()
    assert np.unique(channel.plane).size == 1


def test_counts_and_tables_on_random_color_image(service, rng):
    img = Image(pixels=rng.integers(0, 256, size=(41, 23, 3), dtype=np.uint8))

    result = service.equalize(img)

    assert result.mode is ColorMode.COLOR
    assert [c.channel for c in result.channels] == ["R", "G", "B"]
    for channel in result.channels:
        assert channel.histogram.sum() == 41 * 23
        assert np.all(np.diff(channel.cumulative) >= 0)
        assert channel.cumulative[-1] == 41 * 23
        assert np.all(np.diff(channel.lut.astype(np.int64)) >= 0)
    assert result.image.pixels.shape == img.pixels.shape
    assert result.image.pixels.dtype == np.uint8


def test_color_channels_match_greyscale_runs(service, rng):
    pixels = rng.integers(0, 200, size=(20, 30, 3), dtype=np.uint8)

    color = service.equalize(Image(pixels=pixels))

    for index, name in enumerate(("R", "G", "B")):
        grey = service.equalize(Image(pixels=np.ascontiguousarray(pixels[:, :, index])))
        np.testing.assert_array_equal(color.image.pixels[:, :, index], grey.image.pixels)
        np.testing.assert_array_equal(color.channel(name).lut, grey.channel("Y").lut)


def test_parallel_channels_give_same_result(backend, rng):
    img = Image(pixels=rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8))

    sequential = EqualizationService(backend=backend, parallel_channels=False).equalize(img)
    parallel = EqualizationService(backend=backend, parallel_channels=True).equalize(img)

    np.testing.assert_array_equal(sequential.image.pixels, parallel.image.pixels)


def test_single_channel_axis_is_kept(service):
    pixels = np.arange(16, dtype=np.uint8).reshape(4, 4, 1)

    result = service.equalize(Image(pixels=pixels))

    assert result.mode is ColorMode.GREYSCALE
    assert result.image.pixels.shape == (4, 4, 1)


def test_result_is_a_new_image(service):
    pixels = np.array([[10, 20], [30, 40]], dtype=np.uint8)
    img = Image(pixels=pixels, path=Path("data/in.png"))

    result = service.equalize(img)

    assert result.image is not img
    assert result.image.path == Path("data/in_equalized.png")
    assert result.image.original_pixels is pixels
    assert img.pixels.tolist() == [[10, 20], [30, 40]]


def test_records_stage_timings(service):
    result = service.equalize(Image(pixels=np.zeros((3, 3), dtype=np.uint8)))

    assert list(result.channel("Y").timings) == list(ChannelPipeline.STAGES)
    assert all(ms >= 0 for ms in result.channel("Y").timings.values())
    assert result.total_ms >= 0


@pytest.mark.parametrize("pixels", [
    np.zeros((4, 4, 4), dtype=np.uint8),
    np.zeros((4, 4, 2), dtype=np.uint8),
    np.zeros((0, 4), dtype=np.uint8),
    np.zeros((4, 0, 3), dtype=np.uint8),
    np.zeros((4, 4), dtype=np.uint16),
    np.zeros((4, 4), dtype=np.float32),
    np.zeros(16, dtype=np.uint8),
])
def test_input_errors_run_no_stage(pixels):
    counting = CountingBackend()

    with pytest.raises(InputError):
        EqualizationService(backend=counting).equalize(Image(pixels=pixels))

    assert counting.launches == []


def test_backend_failure_names_channel_and_stage(rng):
    failing = FailingBackend("normalize_lut", fail_on_call=2)
    img = Image(pixels=rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8))

    with pytest.raises(PipelineError) as info:
        EqualizationService(backend=failing, parallel_channels=False).equalize(img)

    error = info.value
    assert len(error.failures) == 1
    assert error.channel == "G"
    assert error.stage == "normalize"
    assert "normalize" in str(error) and "'G'" in str(error)
    assert error.failures[0].cause.operation == "launch normalize_lut"
    # every other channel still ran to completion, every buffer was freed
    assert failing.calls == 3
    assert all(buffer.released for buffer in failing.allocated)


def test_backend_failure_in_greyscale_histogram():
    failing = FailingBackend("hist_atomic")

    with pytest.raises(PipelineError) as info:
        EqualizationService(backend=failing).equalize(Image(pixels=np.ones((3, 3), dtype=np.uint8)))

    assert info.value.stage == "histogram"
    assert info.value.channel == "Y"


def test_broken_program_is_a_compile_error():
    with pytest.raises(CompileError) as info:
        DeviceBufferRepository(ComputeDevice("cpu"), KernelProgram(sources={}, jit=False))

    for name in ("hist_atomic", "scan_step", "normalize_lut", "apply_lut"):
        assert name in info.value.build_log


def test_service_builds_its_own_backend():
    service = EqualizationService(device="cpu", jit=False, parallel_channels=False)

    assert service.backend.device.type == "cpu"
    result = service.equalize(Image(pixels=np.array([[0, 255]], dtype=np.uint8)))
    assert result.image.pixels.tolist() == [[128, 255]]


def test_jit_kernels_match_eager(backend, rng):
    img = Image(pixels=rng.integers(0, 256, size=(10, 10, 3), dtype=np.uint8))
    scripted = DeviceBufferRepository(ComputeDevice("cpu"), KernelProgram(jit=True))

    eager = EqualizationService(backend=backend).equalize(img)
    jit = EqualizationService(backend=scripted).equalize(img)

    np.testing.assert_array_equal(eager.image.pixels, jit.image.pixels)


@pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
def test_four_pixel_scenario_on_cuda():
    service = EqualizationService(device="cuda", jit=False, parallel_channels=True)
    img = Image(pixels=np.array([[0, 64], [128, 255]], dtype=np.uint8))

    assert service.equalize(img).image.pixels.tolist() == [[64, 128], [191, 255]]
