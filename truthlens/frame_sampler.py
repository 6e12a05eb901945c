import os
import logging
import tempfile
from typing import List, Optional

import cv2
import numpy as np

from truthlens.config import settings
from truthlens.errors import DecodeError, CaptureError
from truthlens.schemas import SampledFrame

logger = logging.getLogger("TruthLensEngine")


def sample_timestamps(duration: float, count: int) -> List[float]:
    """Evenly spaced timestamps that skip the very start and end of the video."""
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    if duration <= 0:
        raise DecodeError(f"Video duration must be positive, got {duration}")

    step = duration / (count + 1)
    return [step * (i + 1) for i in range(count)]


def _read_duration(cap: cv2.VideoCapture) -> float:
    fps = cap.get(cv2.CAP_PROP_FPS)
    frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT)
    if not fps or fps <= 0 or not frame_count or frame_count <= 0:
        raise DecodeError(f"Unusable video metadata (fps={fps}, frames={frame_count})")
    return float(frame_count) / float(fps)


def _seek_and_read(cap: cv2.VideoCapture, timestamp_sec: float, fps: float, last_frame: int) -> np.ndarray:
    # Frame-index seeks are exact for every container OpenCV can decode
    frame_index = min(int(round(timestamp_sec * fps)), last_frame)
    if not cap.set(cv2.CAP_PROP_POS_FRAMES, frame_index):
        raise DecodeError(f"Seek to {timestamp_sec:.2f}s (frame {frame_index}) failed")
    ok, frame = cap.read()
    if not ok or frame is None:
        raise DecodeError(f"No frame decoded at {timestamp_sec:.2f}s (frame {frame_index})")
    return frame


def _encode_still(frame: np.ndarray, quality: int) -> bytes:
    success, buffer = cv2.imencode('.jpeg', frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        raise CaptureError("Failed to encode frame as JPEG.")
    return buffer.tobytes()


def sample(video_path: str, count: Optional[int] = None, quality: Optional[int] = None) -> List[SampledFrame]:
    """
    Captures `count` stills from the video at `video_path`.

    Seeks happen one at a time on a single capture handle. Frames are
    returned in ascending timestamp order at the video's native resolution.
    """
    count = settings.FRAME_COUNT if count is None else count
    quality = settings.JPEG_QUALITY if quality is None else quality
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")

    cap = cv2.VideoCapture(str(video_path))
    try:
        if not cap.isOpened():
            raise DecodeError(f"Could not open video: {video_path}")

        duration = _read_duration(cap)
        fps = float(cap.get(cv2.CAP_PROP_FPS))
        last_frame = max(int(cap.get(cv2.CAP_PROP_FRAME_COUNT)) - 1, 0)
        logger.info(f"Sampling {count} frames from {video_path} (duration={duration:.2f}s, fps={fps:.2f})")

        frames: List[SampledFrame] = []
        for ts in sample_timestamps(duration, count):
            image = _seek_and_read(cap, ts, fps, last_frame)
            h, w = image.shape[:2]
            frames.append(SampledFrame(
                timestamp_seconds=ts,
                image_data=_encode_still(image, quality),
                width=w,
                height=h,
            ))
        return frames
    finally:
        cap.release()


def sample_bytes(video_bytes: bytes, count: Optional[int] = None, suffix: str = ".mp4") -> List[SampledFrame]:
    """Samples an in-memory upload. OpenCV only reads from paths, so the bytes are spooled to a temp file."""
    tmp = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
    try:
        tmp.write(video_bytes)
        tmp.flush()
        tmp.close()
        return sample(tmp.name, count)
    finally:
        try:
            os.unlink(tmp.name)
        except OSError as e:
            logger.warning(f"Could not remove temp video {tmp.name}: {e}")
