"""
Frame source for the tracking loop.

The core never decodes video itself. It asks a FrameSource for the frame at
(or just after) a time offset and receives an RGB raster plus the frame's
exact presentation time. VideoFrameSource implements this over OpenCV.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class FrameSourceError(Exception):
    """Decode failure or out-of-range seek. Terminal for a session."""


@dataclass(frozen=True)
class Frame:
    """A decoded RGB raster (H x W x 3, uint8) and its presentation time."""
    image: np.ndarray
    time: float

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass
class VideoMetadata:
    """Basic video properties."""
    width: int
    height: int
    fps: float
    total_frames: int
    duration_seconds: float


class FrameSource(ABC):
    """Interface the tracking loop consumes."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Duration of the source in seconds."""

    @property
    @abstractmethod
    def frame_interval(self) -> float:
        """Nominal time between frames in seconds."""

    @abstractmethod
    def get_frame(self, time: float) -> Frame:
        """Return the first frame presented at or after `time`."""

    def close(self) -> None:
        """Release underlying resources."""


class VideoFrameSource(FrameSource):
    """
    OpenCV-backed frame source.

    Frames are converted from BGR to RGB and optionally downscaled to
    `frame_width`. `scale` reports the resize factor so callers can scale
    their calibration to match.
    """

    def __init__(self, video_path: str, frame_width: int = 0):
        self.video_path = video_path
        self.cap = cv2.VideoCapture(video_path)
        if not self.cap.isOpened():
            raise FrameSourceError(f"Cannot open video: {video_path}")

        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = self.cap.get(cv2.CAP_PROP_FPS)
        total_frames = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))

        if fps <= 0 or total_frames <= 0:
            self.cap.release()
            raise FrameSourceError(f"Video has no readable frames: {video_path}")

        self.metadata = VideoMetadata(
            width=width,
            height=height,
            fps=fps,
            total_frames=total_frames,
            duration_seconds=total_frames / fps,
        )

        # Resize for faster processing (maintain aspect ratio)
        self.scale = 1.0
        if frame_width and width > frame_width:
            self.scale = frame_width / width

        # Index the decoder will return on the next read without seeking
        self._next_index: Optional[int] = 0

        logger.info(
            f"Opened video {video_path}: {width}x{height}, {fps:.1f}fps, "
            f"{self.metadata.duration_seconds:.1f}s"
        )

    @property
    def duration(self) -> float:
        return self.metadata.duration_seconds

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.metadata.fps

    def get_frame(self, time: float) -> Frame:
        if time < 0:
            raise FrameSourceError(f"Seek before start of video: {time:.3f}s")

        # Small tolerance so a request at an exact frame time maps to that frame
        frame_index = int(math.ceil(time * self.metadata.fps - 1e-6))
        if frame_index >= self.metadata.total_frames:
            raise FrameSourceError(
                f"Seek past end of video: {time:.3f}s > {self.metadata.duration_seconds:.3f}s"
            )

        # Sequential reads are much cheaper than seeks
        if frame_index != self._next_index:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, frame_index)

        ret, frame = self.cap.read()
        if not ret or frame is None:
            self._next_index = None
            raise FrameSourceError(f"Failed to decode frame {frame_index} of {self.video_path}")
        self._next_index = frame_index + 1

        frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        if self.scale != 1.0:
            new_width = int(round(frame.shape[1] * self.scale))
            new_height = int(round(frame.shape[0] * self.scale))
            frame = cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_LINEAR)

        return Frame(image=frame, time=frame_index / self.metadata.fps)

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
