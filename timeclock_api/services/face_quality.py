# timeclock_api/services/face_quality.py
import logging

import numpy as np

logger = logging.getLogger(__name__)


class FaceQualityGate:
    """
    Brightness heuristic run before the (expensive) embedding call.

    This is not face detection: it only rejects frames that are close to black
    (lens covered, no light) or close to white (overexposed, blank).
    """

    MIN_BRIGHTNESS = 30
    MAX_BRIGHTNESS = 220
    SAMPLE_STEP = 10  # every 10th pixel

    def __init__(self, min_brightness: float = MIN_BRIGHTNESS, max_brightness: float = MAX_BRIGHTNESS,
                 sample_step: int = SAMPLE_STEP):
        self.min_brightness = min_brightness
        self.max_brightness = max_brightness
        self.sample_step = sample_step

    def average_brightness(self, frame) -> float:
        """Mean of R, G, B over the sampled pixels. Raises ValueError on empty frames."""
        arr = np.asarray(frame)
        if arr.size == 0:
            raise ValueError("empty frame")
        if arr.ndim == 2:
            pixels = arr.reshape(-1, 1)
        elif arr.ndim == 3:
            pixels = arr.reshape(-1, arr.shape[-1])[:, :3]  # drop alpha
        else:
            raise ValueError(f"unsupported frame shape {arr.shape}")

        sampled = pixels[::self.sample_step].astype(np.float64)
        return float(sampled.mean())

    def has_usable_face(self, frame) -> bool:
        try:
            avg = self.average_brightness(frame)
        except (ValueError, TypeError) as e:
            logger.info("Quality gate rejected degenerate frame: %s", e)
            return False

        usable = self.min_brightness < avg < self.max_brightness
        logger.debug("Quality gate - average brightness: %.1f usable: %s", avg, usable)
        return usable
