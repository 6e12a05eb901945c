"""Shared fixtures: canned oracle payloads, fake Gemini client, synthetic videos."""
import copy
import json
from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np
import pytest

from truthlens.schemas import SampledFrame


REPORT_PAYLOAD = {
    "overallScore": 87,
    "confidence": 0.93,
    "detections": {
        "eyes": {"score": 80, "status": "manipulated", "observation": "No corneal highlights across frames."},
        "mouth": {"score": 64, "status": "suspicious", "observation": "Teeth blur between frames 2 and 3."},
        "skin": {"score": 72, "status": "manipulated", "observation": "Over-smoothed texture on cheeks."},
        "lighting": {"score": 25, "status": "natural", "observation": "Key light direction is consistent."}
    },
    "anomalies": [
        {"timestamp": 5.4, "description": "Jawline ghosting", "severity": "high",
         "coordinates": {"x": 48, "y": 70, "radius": 8}},
        {"timestamp": 1.8, "description": "Eye moisture missing", "severity": "medium",
         "coordinates": {"x": 40, "y": 35, "radius": 5}},
        {"timestamp": 3.6, "description": "Hairline warping", "severity": "low",
         "coordinates": {"x": 55, "y": 12, "radius": 10}}
    ],
    "summary": "Multiple generative artifacts concentrated on the face.",
    "recommendation": "Treat as synthetic. Do not distribute without provenance."
}


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


class FakeGenaiClient:
    """Stands in for google.genai.Client; only the async models surface is used."""

    def __init__(self, text=None, error=None):
        self.models = FakeModels(text=text, error=error)
        self.aio = SimpleNamespace(models=self.models)


@pytest.fixture
def report_payload():
    return copy.deepcopy(REPORT_PAYLOAD)


@pytest.fixture
def report_json(report_payload):
    return json.dumps(report_payload)


def _jpeg(width=64, height=48, value=128) -> bytes:
    image = np.full((height, width, 3), value, dtype=np.uint8)
    ok, buf = cv2.imencode('.jpeg', image)
    assert ok
    return buf.tobytes()


@pytest.fixture
def frames():
    return [
        SampledFrame(timestamp_seconds=ts, image_data=_jpeg(value=40 * (i + 1)), width=64, height=48)
        for i, ts in enumerate([1.8, 3.6, 5.4, 7.2])
    ]


def write_test_video(path: Path, seconds: float, fps: float = 10.0, size=(64, 48)) -> Path:
    """Writes an MJPG AVI whose frame brightness encodes the frame index."""
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, size)
    assert writer.isOpened()
    try:
        for i in range(int(round(seconds * fps))):
            frame = np.full((size[1], size[0], 3), (i * 2) % 256, dtype=np.uint8)
            writer.write(frame)
    finally:
        writer.release()
    return path


@pytest.fixture
def nine_second_video(tmp_path):
    return write_test_video(tmp_path / "clip.avi", seconds=9.0)
