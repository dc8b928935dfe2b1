"""
Display side of the device: frame gate and panel drivers.

The frame gate is the only place that interprets relay payloads. A frame of
the wrong length is logged and discarded; the session is never affected.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .frame_codec import FrameSizeError, frame_size, solid_frame, unpack_frame

logger = logging.getLogger(__name__)

STARTUP_COLOR = (0, 0, 30)  # dim blue until the first frame arrives


class DisplayDriver:
    """Panel interface: consumes (H, W, 3) RGB images, gives no feedback."""

    def show(self, pixels: np.ndarray) -> None:
        raise NotImplementedError

    def pump(self) -> None:
        """Service the driver once per main-loop iteration."""

    def close(self) -> None:
        pass


class NullDisplay(DisplayDriver):
    """Headless driver that keeps the last image shown."""

    def __init__(self):
        self.last_frame: Optional[np.ndarray] = None
        self.frames_shown = 0

    def show(self, pixels: np.ndarray) -> None:
        self.last_frame = pixels
        self.frames_shown += 1


class PreviewDisplay(DisplayDriver):
    """
    Desktop stand-in for the LED panel.

    Draws each frame into an OpenCV window, scaled up with nearest-neighbour
    so individual pixels stay visible.
    """

    def __init__(self, window_name: str = "Relay Display", scale: int = 16):
        self.window_name = window_name
        self.scale = scale
        self._opened = False

    def show(self, pixels: np.ndarray) -> None:
        h, w = pixels.shape[:2]
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        bgr = cv2.resize(bgr, (w * self.scale, h * self.scale), interpolation=cv2.INTER_NEAREST)
        cv2.imshow(self.window_name, bgr)
        self._opened = True

    def pump(self) -> None:
        if self._opened:
            cv2.waitKey(1)

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self.window_name)
            self._opened = False


class FrameGate:
    """
    Validates relay frames before they reach the panel.

    Tracks displayed and discarded counts the same way for every driver.
    """

    def __init__(self, driver: DisplayDriver, width: int = 32, height: int = 32):
        """
        Initialize FrameGate.

        Args:
            driver: Panel driver receiving decoded images
            width: Panel width in pixels
            height: Panel height in pixels
        """
        self.driver = driver
        self.width = width
        self.height = height
        self.expected_size = frame_size(width, height)

        self._frames_displayed = 0
        self._frames_discarded = 0
        self._last_error: Optional[str] = None

    def show_startup(self, color: Tuple[int, int, int] = STARTUP_COLOR) -> None:
        """Fill the panel with the startup colour."""
        self.driver.show(solid_frame(self.width, self.height, color))

    def handle(self, data: bytes) -> bool:
        """
        Decode and display one frame.

        Returns:
            True if the frame was displayed, False if it was discarded
        """
        try:
            pixels = unpack_frame(data, self.width, self.height)
        except FrameSizeError as e:
            self._frames_discarded += 1
            self._last_error = str(e)
            logger.warning(str(e))
            return False

        self.driver.show(pixels)
        self._frames_displayed += 1
        return True

    def get_stats(self) -> dict:
        """Get display statistics."""
        total = self._frames_displayed + self._frames_discarded
        return {
            "total_frames": total,
            "displayed": self._frames_displayed,
            "discarded": self._frames_discarded,
            "expected_size": self.expected_size,
            "last_error": self._last_error,
        }
