import json
import logging
from typing import List, Dict, Optional, Any, Sequence

from pydantic import ValidationError
from google import genai
from google.genai import types

from truthlens.config import settings
from truthlens.errors import SchemaError, NetworkError
from truthlens.schemas import ForensicReport, SampledFrame, DETECTION_KEYS

logger = logging.getLogger("TruthLensEngine")


def _feature_schema() -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "score": {"type": "NUMBER", "description": "0 to 100", "minimum": 0, "maximum": 100},
            "status": {"type": "STRING", "enum": ["natural", "suspicious", "manipulated"]},
            "observation": {"type": "STRING"}
        },
        "required": ["score", "status", "observation"]
    }


# Mirrors ForensicReport; the model is constrained to this shape
FORENSIC_REPORT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "overallScore": {"type": "NUMBER", "description": "Scale 0-100 where 100 is definite deepfake", "minimum": 0, "maximum": 100},
        "confidence": {"type": "NUMBER", "description": "0.0 to 1.0", "minimum": 0, "maximum": 1},
        "detections": {
            "type": "OBJECT",
            "properties": {key: _feature_schema() for key in DETECTION_KEYS},
            "required": list(DETECTION_KEYS)
        },
        "anomalies": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "timestamp": {"type": "NUMBER"},
                    "description": {"type": "STRING"},
                    "severity": {"type": "STRING", "enum": ["low", "medium", "high"]},
                    "coordinates": {
                        "type": "OBJECT",
                        "properties": {
                            "x": {"type": "NUMBER", "minimum": 0, "maximum": 100},
                            "y": {"type": "NUMBER", "minimum": 0, "maximum": 100},
                            "radius": {"type": "NUMBER", "minimum": 0}
                        },
                        "required": ["x", "y", "radius"]
                    }
                },
                "required": ["timestamp", "description", "severity", "coordinates"]
            }
        },
        "summary": {"type": "STRING"},
        "recommendation": {"type": "STRING"}
    },
    "required": ["overallScore", "confidence", "detections", "anomalies", "summary", "recommendation"]
}


def parse_report(text: Optional[str]) -> ForensicReport:
    """Turns the raw model text into a ForensicReport or raises SchemaError. Never returns a partial report."""
    if not text or not text.strip():
        raise SchemaError("Empty response from forensic engine.")

    # Clean Markdown
    clean_json = text.replace("```json", "").replace("```", "").strip()
    try:
        data = json.loads(clean_json)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid forensic data returned from engine: {e}") from e

    if not isinstance(data, dict):
        raise SchemaError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return ForensicReport.model_validate(data)
    except ValidationError as e:
        raise SchemaError(f"Forensic report failed validation: {e.error_count()} error(s)\n{e}") from e


class ForensicAnalysisClient:
    def __init__(self, genai_client: Optional[Any] = None, model: Optional[str] = None,
                 temperature: Optional[float] = None):
        self.genai_client = genai_client or genai.Client(api_key=settings.GOOGLE_API_KEY)
        self.model = model or settings.ANALYSIS_MODEL
        self.temperature = settings.ANALYSIS_TEMPERATURE if temperature is None else temperature

        self.generation_config = types.GenerateContentConfig(
            temperature=self.temperature,
            response_mime_type="application/json",
            response_schema=FORENSIC_REPORT_SCHEMA,
        )

    def build_contents(self, frames: Sequence[SampledFrame]) -> List[types.Content]:
        """Instruction first, then one inline image per frame in sampling order."""
        parts = [types.Part(text=settings.FORENSIC_INSTRUCTION.format(frame_count=len(frames)))]
        for frame in frames:
            parts.append(types.Part(inline_data=types.Blob(mime_type=frame.mime_type, data=frame.image_data)))
        return [types.Content(role="user", parts=parts)]

    async def analyze(self, frames: Sequence[SampledFrame]) -> ForensicReport:
        if not frames:
            raise ValueError("At least one frame is required for analysis.")

        logger.info(f"Submitting {len(frames)} frames to {self.model} (temperature={self.temperature})")
        try:
            response = await self.genai_client.aio.models.generate_content(
                model=self.model,
                contents=self.build_contents(frames),
                config=self.generation_config
            )
        except Exception as e:
            raise NetworkError(f"Forensic engine request failed: {e}") from e

        result_text = getattr(response, "text", None)
        try:
            report = parse_report(result_text)
        except SchemaError:
            logger.error(f"Failed to parse forensic report: {(result_text or '')[:500]}")
            raise

        logger.info(f"Forensic report received: overallScore={report.overall_score}, confidence={report.confidence}")
        return report
