import os
import logging
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    GOOGLE_API_KEY: str = os.environ.get("GOOGLE_API_KEY", "")

    # --- MODEL ---
    # Pro preview for high-stakes forensic reasoning
    ANALYSIS_MODEL: str = "gemini-3-pro-preview"
    # Low temperature for deterministic verdicts
    ANALYSIS_TEMPERATURE: float = 0.1

    # --- FRAME SAMPLING ---
    FRAME_COUNT: int = 4
    JPEG_QUALITY: int = 80

    # --- PROGRESS HUD (cosmetic only) ---
    PROGRESS_INTERVAL_SECONDS: float = 1.2
    PROGRESS_CAP: float = 92.0
    PROGRESS_MAX_INCREMENT: float = 5.0
    RESULT_DELAY_SECONDS: float = 0.5

    # Shown to users; uploads are not checked against it
    MAX_UPLOAD_MB: int = 50

    SYNTHETIC_THRESHOLD: float = 50.0

    LOG_LEVEL: str = "INFO"

    FORENSIC_INSTRUCTION: str = """You are a Tier-1 Digital Forensic Investigator specializing in Synthetic Media Attribution.
I am providing {frame_count} keyframes from a video. Conduct an exhaustive forensic scan for:
1. BIOLOGICAL MARKERS: Unnatural eye blinking rhythm, absence of micro-expressions, lack of eye-moisture highlights.
2. GENERATIVE ARTIFACTS: Double-edge ghosting around jawlines, texture warping in hair/ear zones, and 'zombie' eyes.
3. COMPRESSION & NOISE: Mismatched JPEG noise between the subject and background, indicating a face-swap.
4. TEMPORAL COHERENCE: Sudden shifts in face orientation that look 'jittery' across frames.

BE CRITICAL. If there is a 1% doubt, flag it as 'suspicious'.
Anomaly coordinates use a normalized 0-100 plane (x, y, radius).
Return a JSON forensic report using the provided schema."""

    model_config = {"env_file": ".env", "extra": "ignore"}

settings = Settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
