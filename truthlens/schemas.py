import base64
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Literal, Tuple

FeatureStatus = Literal["natural", "suspicious", "manipulated"]
Severity = Literal["low", "medium", "high"]

DETECTION_KEYS = ("eyes", "mouth", "skin", "lighting")


class SampledFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_seconds: float
    image_data: bytes # encoded still, see mime_type
    mime_type: str = "image/jpeg"
    width: int
    height: int

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.image_data).decode('utf-8')

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"


# --- Oracle output. Wire names follow the response schema (camelCase). ---

class FeatureAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=100)
    status: FeatureStatus
    observation: str


class Detections(BaseModel):
    model_config = ConfigDict(frozen=True)

    eyes: FeatureAnalysis
    mouth: FeatureAnalysis
    skin: FeatureAnalysis
    lighting: FeatureAnalysis


class AnomalyCoordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    # May land slightly off the 0-100 plane; the overlay clamps the centre
    x: float
    y: float
    radius: float = Field(ge=0)


class Anomaly(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float # seconds into the video
    description: str
    severity: Severity
    coordinates: AnomalyCoordinates


class ForensicReport(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    overall_score: float = Field(alias="overallScore", ge=0, le=100) # 100 = definitely deepfake
    confidence: float = Field(ge=0.0, le=1.0)
    detections: Detections
    anomalies: List[Anomaly]
    summary: str
    recommendation: str


# --- Application state ---

class ApplicationPhase(str, Enum):
    IDLE = "IDLE"
    EXTRACTING = "EXTRACTING"
    ANALYZING = "ANALYZING"
    RESULT = "RESULT"
    ERROR = "ERROR"


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: ApplicationPhase = ApplicationPhase.IDLE
    filename: Optional[str] = None
    frames: Tuple[SampledFrame, ...] = ()
    report: Optional[ForensicReport] = None
    error: Optional[str] = None
    progress: float = 0.0
    step_index: int = 0


class SessionSnapshot(BaseModel):
    phase: ApplicationPhase
    progress: int
    step_label: Optional[str] = None
    error: Optional[str] = None
    filename: Optional[str] = None
    frame_count: int = 0
    engine_status: str
    max_upload_mb: int


# --- Dashboard view model ---

class RadarAxis(BaseModel):
    subject: str
    value: float


class FeatureBar(BaseModel):
    key: str
    score: float
    status: FeatureStatus
    status_label: str
    status_color: str
    bar_color: str
    observation: str


class AnomalyEntry(BaseModel):
    timestamp: float
    offset_label: str
    description: str
    severity: Severity
    severity_label: str
    badge_color: str
    coordinates: AnomalyCoordinates


class OverlayFrame(BaseModel):
    index: int
    timestamp_seconds: float
    timestamp_label: str
    overlay_url: str
    anomaly_count: int


class DashboardView(BaseModel):
    report_id: str
    authenticated_at: str
    classification: Literal["AI_GENERATED", "ORIGINAL_VIDEO"]
    is_synthetic: bool
    accent_color: str
    synthetic_probability: float
    synthetic_probability_label: str
    confidence_percent: str
    signature_blurb: str
    radar: List[RadarAxis]
    features: List[FeatureBar]
    anomalies: List[AnomalyEntry]
    anomaly_notice: Optional[str] = None
    frames: List[OverlayFrame]
    summary: str
    recommendation: str
