# timeclock_api/services/frames.py
import base64
import binascii
import io
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from timeclock_api.services.errors import QualityRejected

logger = logging.getLogger(__name__)


def decode_frame(data) -> np.ndarray:
    """
    Decode an uploaded capture into an RGB uint8 array (H, W, 3).

    Accepts raw image bytes, a file-like object (werkzeug FileStorage) or a
    ``data:image/...;base64,`` URL as produced by canvas.toDataURL().
    """
    if hasattr(data, "read"):
        data = data.read()
    if isinstance(data, str):
        payload = data.split(",", 1)[1] if data.startswith("data:") else data
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise QualityRejected("Image is not valid base64") from e
    elif data is not None and not isinstance(data, (bytes, bytearray)):
        raise QualityRejected("Unsupported image payload")

    if not data:
        raise QualityRejected("Empty image")

    try:
        with Image.open(io.BytesIO(data)) as img:
            return np.asarray(img.convert("RGB"))
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Could not decode capture: %s", e)
        raise QualityRejected("Image could not be decoded") from e


def encode_reference_image(frame: np.ndarray, quality: int = 80) -> str:
    """JPEG data URL of a frame, stored next to an enrollment for display."""
    buf = io.BytesIO()
    Image.fromarray(np.asarray(frame, dtype=np.uint8)).convert("RGB").save(buf, format="JPEG", quality=quality)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
