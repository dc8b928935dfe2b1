"""
RGB565 Frame Codec.

Converts between 24-bit RGB triples and 16-bit packed RGB565 samples:

    RRRRRGGG GGGBBBBB   (high byte first)

Unpacking shifts the fields back up without replicating the low bits, so
255 comes back as 248 (red/blue) or 252 (green).
"""

from typing import Tuple

import numpy as np

BYTES_PER_PIXEL = 2


class FrameSizeError(ValueError):
    """Raised when a binary frame does not match the expected size."""

    def __init__(self, got: int, expected: int):
        super().__init__(f"Frame size mismatch: got {got}, expected {expected}")
        self.got = got
        self.expected = expected


def frame_size(width: int, height: int) -> int:
    """Byte length of a packed frame."""
    return width * height * BYTES_PER_PIXEL


def pack_rgb565(r: int, g: int, b: int) -> int:
    """Pack an 8-bit RGB triple into a 16-bit sample."""
    for name, value in (("r", r), ("g", g), ("b", b)):
        if not 0 <= value <= 255:
            raise ValueError(f"{name}={value} outside 0..255")
    return ((r >> 3) << 11) | ((g >> 2) << 5) | (b >> 3)


def unpack_rgb565(value: int) -> Tuple[int, int, int]:
    """Unpack a 16-bit sample into an 8-bit RGB triple."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"value={value} outside 0..0xFFFF")
    return (
        ((value >> 11) & 0x1F) << 3,
        ((value >> 5) & 0x3F) << 2,
        (value & 0x1F) << 3,
    )


def pack_frame(pixels: np.ndarray) -> bytes:
    """
    Pack an (H, W, 3) uint8 RGB image into RGB565 bytes.

    Args:
        pixels: Row-major RGB image

    Returns:
        H * W * 2 bytes, big-endian per pixel
    """
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected (H, W, 3) image, got shape {pixels.shape}")

    rgb = pixels.astype(np.uint16)
    packed = ((rgb[..., 0] >> 3) << 11) | ((rgb[..., 1] >> 2) << 5) | (rgb[..., 2] >> 3)
    return packed.astype(">u2").tobytes()


def unpack_frame(data: bytes, width: int, height: int) -> np.ndarray:
    """
    Unpack RGB565 bytes into an (H, W, 3) uint8 RGB image.

    Raises:
        FrameSizeError: If len(data) != width * height * 2
    """
    expected = frame_size(width, height)
    if len(data) != expected:
        raise FrameSizeError(len(data), expected)

    packed = np.frombuffer(data, dtype=">u2").reshape(height, width).astype(np.uint16)

    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[..., 0] = ((packed >> 11) & 0x1F) << 3
    pixels[..., 1] = ((packed >> 5) & 0x3F) << 2
    pixels[..., 2] = (packed & 0x1F) << 3
    return pixels


def solid_frame(width: int, height: int, color: Tuple[int, int, int]) -> np.ndarray:
    """An (H, W, 3) image filled with one colour."""
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[...] = color
    return pixels
