import random
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from truthlens.config import settings
from truthlens.schemas import (
    AnomalyEntry,
    DashboardView,
    DETECTION_KEYS,
    FeatureBar,
    ForensicReport,
    OverlayFrame,
    RadarAxis,
    SampledFrame,
)

RED = "#ef4444"
YELLOW = "#eab308"
GREEN = "#22c55e"
GRAY = "#9ca3af"

STATUS_COLORS = {"natural": GREEN, "suspicious": YELLOW, "manipulated": RED}

MAX_OVERLAY_FRAMES = 4

NO_ANOMALIES_NOTICE = "No significant pixel-level anomalies flagged."


def is_synthetic(overall_score: float, threshold: Optional[float] = None) -> bool:
    """Binary call on the overall score. The threshold itself counts as synthetic."""
    threshold = settings.SYNTHETIC_THRESHOLD if threshold is None else threshold
    return overall_score >= threshold


def classify(overall_score: float) -> str:
    return "AI_GENERATED" if is_synthetic(overall_score) else "ORIGINAL_VIDEO"


def score_band_color(score: float) -> str:
    if score > 70:
        return RED
    if score > 30:
        return YELLOW
    return GREEN


def _format_score(score: float) -> str:
    return f"{int(score)}%" if float(score).is_integer() else f"{score:.1f}%"


def _radar(report: ForensicReport) -> List[RadarAxis]:
    return [RadarAxis(subject=key.capitalize(), value=getattr(report.detections, key).score) for key in DETECTION_KEYS]


def _feature_bars(report: ForensicReport) -> List[FeatureBar]:
    bars = []
    for key in DETECTION_KEYS:
        feature = getattr(report.detections, key)
        bars.append(FeatureBar(
            key=key,
            score=feature.score,
            status=feature.status,
            status_label=feature.status.upper(),
            status_color=STATUS_COLORS.get(feature.status, GRAY),
            bar_color=score_band_color(feature.score),
            observation=feature.observation,
        ))
    return bars


def _anomaly_entries(report: ForensicReport) -> List[AnomalyEntry]:
    # sorted() is stable, so anomalies sharing a timestamp keep the model's order
    chronological = sorted(report.anomalies, key=lambda a: a.timestamp)
    return [
        AnomalyEntry(
            timestamp=a.timestamp,
            offset_label=f"{a.timestamp:.2f}s",
            description=a.description,
            severity=a.severity,
            severity_label=a.severity.upper(),
            badge_color=RED if a.severity == "high" else YELLOW,
            coordinates=a.coordinates,
        )
        for a in chronological
    ]


def _overlay_frames(report: ForensicReport, frames: Sequence[SampledFrame]) -> List[OverlayFrame]:
    # The report does not say which frame an anomaly belongs to, so every frame gets all of them
    return [
        OverlayFrame(
            index=idx,
            timestamp_seconds=frame.timestamp_seconds,
            timestamp_label=f"FRAME_TS: {frame.timestamp_seconds:.2f}s",
            overlay_url=f"/frames/{idx}/overlay.jpg",
            anomaly_count=len(report.anomalies),
        )
        for idx, frame in enumerate(frames[:MAX_OVERLAY_FRAMES])
    ]


def new_report_id() -> str:
    return f"TLR-{random.randint(0, 9999)}"


def build_dashboard(report: ForensicReport, frames: Sequence[SampledFrame],
                    report_id: Optional[str] = None, issued_at: Optional[datetime] = None) -> DashboardView:
    """
    Builds the result dashboard for a completed report.

    Pure apart from the defaults for `report_id` and `issued_at`; neither the
    report nor the frames are modified.
    """
    synthetic = is_synthetic(report.overall_score)
    report_id = report_id or new_report_id()
    issued_at = issued_at or datetime.now(timezone.utc)

    if synthetic:
        blurb = "Neural signature analysis detected markers consistent with synthetic image synthesis models."
    else:
        blurb = "Neural signature analysis detected markers consistent with camera-captured organic light distribution."

    anomalies = _anomaly_entries(report)

    return DashboardView(
        report_id=report_id,
        authenticated_at=issued_at.isoformat(),
        classification=classify(report.overall_score),
        is_synthetic=synthetic,
        accent_color=RED if synthetic else GREEN,
        synthetic_probability=report.overall_score,
        synthetic_probability_label=_format_score(report.overall_score),
        confidence_percent=f"{report.confidence * 100:.1f}%",
        signature_blurb=blurb,
        radar=_radar(report),
        features=_feature_bars(report),
        anomalies=anomalies,
        anomaly_notice=None if anomalies else NO_ANOMALIES_NOTICE,
        frames=_overlay_frames(report, frames),
        summary=report.summary,
        recommendation=report.recommendation,
    )
