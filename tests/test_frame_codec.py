"""
Tests for the RGB565 codec and the display frame gate.
"""

import numpy as np
import pytest

from device_client.display import FrameGate, NullDisplay, STARTUP_COLOR
from device_client.frame_codec import (
    FrameSizeError,
    frame_size,
    pack_frame,
    pack_rgb565,
    solid_frame,
    unpack_frame,
    unpack_rgb565,
)


class TestPixelCodec:

    def test_white_quantizes_to_248_252_248(self):
        packed = pack_rgb565(255, 255, 255)
        assert packed == 0xFFFF
        assert unpack_rgb565(packed) == (248, 252, 248)

    def test_red_field_is_31(self):
        packed = pack_rgb565(255, 0, 0)
        assert packed >> 11 == 31
        assert unpack_rgb565(packed) == (248, 0, 0)

    def test_field_layout(self):
        assert pack_rgb565(0, 255, 0) == 0x07E0
        assert pack_rgb565(0, 0, 255) == 0x001F
        assert pack_rgb565(0, 200, 255) == (50 << 5) | 31

    @pytest.mark.parametrize("rgb", [(0, 0, 0), (1, 2, 3), (60, 150, 255), (127, 128, 129), (254, 253, 7)])
    def test_round_trip_within_quantization(self, rgb):
        r, g, b = unpack_rgb565(pack_rgb565(*rgb))
        assert 0 <= rgb[0] - r <= 7
        assert 0 <= rgb[1] - g <= 3
        assert 0 <= rgb[2] - b <= 7

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            pack_rgb565(256, 0, 0)
        with pytest.raises(ValueError):
            unpack_rgb565(0x10000)


class TestFrameCodec:

    def test_frame_size(self):
        assert frame_size(32, 32) == 2048

    def test_pack_is_big_endian_row_major(self):
        pixels = np.zeros((2, 2, 3), dtype=np.uint8)
        pixels[0, 1] = (255, 0, 0)
        pixels[1, 0] = (0, 0, 255)
        data = pack_frame(pixels)
        assert data == bytes([0x00, 0x00, 0xF8, 0x00, 0x00, 0x1F, 0x00, 0x00])

    def test_frame_matches_pixel_codec(self):
        rng = np.random.default_rng(7)
        pixels = rng.integers(0, 256, size=(32, 32, 3), dtype=np.uint8)
        data = pack_frame(pixels)
        assert len(data) == 2048

        decoded = unpack_frame(data, 32, 32)
        y, x = 5, 17
        value = (data[(y * 32 + x) * 2] << 8) | data[(y * 32 + x) * 2 + 1]
        assert tuple(int(c) for c in decoded[y, x]) == unpack_rgb565(value)
        assert np.all(pixels.astype(int) - decoded.astype(int) >= 0)

    def test_unpack_rejects_wrong_length(self):
        with pytest.raises(FrameSizeError) as exc:
            unpack_frame(bytes(100), 32, 32)
        assert exc.value.got == 100
        assert exc.value.expected == 2048

    def test_pack_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            pack_frame(np.zeros((4, 4), dtype=np.uint8))


class TestFrameGate:

    def test_valid_frame_displayed(self):
        driver = NullDisplay()
        gate = FrameGate(driver, 32, 32)
        data = pack_frame(solid_frame(32, 32, (0, 200, 255)))

        assert gate.handle(data) is True
        assert driver.frames_shown == 1
        assert tuple(int(c) for c in driver.last_frame[0, 0]) == (0, 200, 248)

    def test_size_mismatch_discarded(self):
        driver = NullDisplay()
        gate = FrameGate(driver, 32, 32)

        assert gate.handle(bytes(2047)) is False
        assert driver.frames_shown == 0
        stats = gate.get_stats()
        assert stats["discarded"] == 1
        assert "2047" in stats["last_error"]

    def test_startup_fill(self):
        driver = NullDisplay()
        FrameGate(driver, 8, 4).show_startup()
        assert driver.last_frame.shape == (4, 8, 3)
        assert tuple(int(c) for c in driver.last_frame[3, 7]) == STARTUP_COLOR
