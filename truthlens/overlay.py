import io
from typing import Sequence, Tuple

from PIL import Image, ImageDraw

from truthlens.schemas import Anomaly, SampledFrame

HIGH_FILL = (239, 68, 68, 102) # red, alpha 0.4
OTHER_FILL = (234, 179, 8, 102) # yellow, alpha 0.4
MARKER = (255, 255, 255, 255)

LEADER_OFFSET = 5.0 # normalized units, up and to the right
DOT_RADIUS = 0.5
LINE_WIDTH = 0.2


def _to_pixels(x: float, y: float, w: int, h: int) -> Tuple[float, float]:
    # Normalized 0-100 plane stretched over the whole frame
    return x * w / 100.0, y * h / 100.0


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 100.0)


def _ellipse_box(x: float, y: float, radius: float, w: int, h: int):
    cx, cy = _to_pixels(x, y, w, h)
    rx, ry = radius * w / 100.0, radius * h / 100.0
    return [cx - rx, cy - ry, cx + rx, cy + ry]


def render_overlay(frame: SampledFrame, anomalies: Sequence[Anomaly], quality: int = 90) -> bytes:
    """Draws every anomaly on top of `frame` and returns the composited JPEG."""
    base = Image.open(io.BytesIO(frame.image_data)).convert("RGBA")
    w, h = base.size
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    line_px = max(1, int(round(LINE_WIDTH * min(w, h) / 100.0)))
    for anomaly in anomalies:
        c = anomaly.coordinates
        x, y = _clamp(c.x), _clamp(c.y)
        fill = HIGH_FILL if anomaly.severity == "high" else OTHER_FILL
        draw.ellipse(_ellipse_box(x, y, c.radius, w, h), fill=fill)
        draw.ellipse(_ellipse_box(x, y, DOT_RADIUS, w, h), fill=MARKER)
        start = _to_pixels(x, y, w, h)
        end = _to_pixels(x + LEADER_OFFSET, y - LEADER_OFFSET, w, h)
        draw.line([start, end], fill=MARKER, width=line_px)

    composited = Image.alpha_composite(base, layer).convert("RGB")
    output_buffer = io.BytesIO()
    composited.save(output_buffer, format="JPEG", quality=quality)
    return output_buffer.getvalue()
