# timeclock_api/services/face_engine.py
import logging
import threading
from typing import List, Sequence

import numpy as np

from timeclock_api.services.errors import ExtractionError

logger = logging.getLogger(__name__)


def l2_normalize(vector: Sequence[float]) -> np.ndarray:
    """
    Divide every component by the Euclidean norm. A zero norm is treated as 1,
    so an all-zero vector comes back unchanged.
    """
    v = np.asarray(vector, dtype=np.float64).ravel()
    norm = float(np.linalg.norm(v))
    if norm == 0:
        norm = 1.0
    return v / norm


def compute_similarity(emb1: Sequence[float], emb2: Sequence[float]) -> float:
    """
    Compute cosine similarity between two embeddings.
    Returns a value between -1 and 1 (1 means identical), 0 if either norm is 0.
    """
    a = np.asarray(emb1, dtype=np.float64)
    b = np.asarray(emb2, dtype=np.float64)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    sim = float(np.dot(a, b) / (norm_a * norm_b))
    # rounding can push |sim| a hair above 1
    return max(-1.0, min(1.0, sim))


class EmbeddingExtractor:
    """
    Frame -> fixed length, L2-normalized embedding.

    Subclasses implement ``_raw_embedding``; normalization and error wrapping
    happen here so every backend behaves the same.
    """

    version: str = "unversioned"
    dimensions: int = 0

    def _raw_embedding(self, frame: np.ndarray) -> Sequence[float]:
        raise NotImplementedError

    def warm_up(self):
        """Load whatever the backend needs before the first scan. Default: nothing."""

    def extract(self, frame: np.ndarray) -> List[float]:
        try:
            raw = self._raw_embedding(frame)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error("Face engine error: %s", e)
            raise ExtractionError(f"Embedding extraction failed: {e}") from e

        if raw is None or len(raw) == 0:
            raise ExtractionError("Model returned no embedding")
        return l2_normalize(raw).tolist()


class DeepFaceExtractor(EmbeddingExtractor):
    """
    Wrapper around DeepFace.

    The model is built on first use and kept on the instance; later calls
    reuse it. Loading is serialized so concurrent first calls build it once.
    """

    MODEL_NAME = "Facenet512"
    DETECTOR_BACKEND = "opencv"  # Fast

    def __init__(self, model_name: str = MODEL_NAME, version: str = "deepface-facenet512-v1",
                 dimensions: int = 512, detector_backend: str = DETECTOR_BACKEND):
        self.model_name = model_name
        self.version = version
        self.dimensions = dimensions
        self.detector_backend = detector_backend
        self._deepface = None
        self._load_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._deepface is not None

    def warm_up(self):
        self._ensure_loaded()

    def _ensure_loaded(self):
        if self._deepface is not None:
            return self._deepface
        with self._load_lock:
            if self._deepface is None:
                logger.info("Loading face recognition model %s...", self.model_name)
                try:
                    # Lazy import to avoid startup overhead if not used
                    from deepface import DeepFace
                    DeepFace.build_model(model_name=self.model_name)
                except Exception as e:
                    logger.error("Error loading face recognition model: %s", e)
                    raise ExtractionError(f"Face model could not be loaded: {e}") from e
                self._deepface = DeepFace
                logger.info("Face recognition model loaded successfully")
        return self._deepface

    def _raw_embedding(self, frame: np.ndarray) -> Sequence[float]:
        deepface = self._ensure_loaded()
        try:
            results = deepface.represent(
                img_path=np.ascontiguousarray(np.asarray(frame)[:, :, ::-1]),  # DeepFace expects BGR
                model_name=self.model_name,
                enforce_detection=True,
                detector_backend=self.detector_backend,
            )
        except ValueError as ve:
            # DeepFace raises ValueError if face could not be detected when enforce_detection=True
            logger.warning("Face detection failed: %s", ve)
            raise ExtractionError("No face detected") from ve

        if not results:
            raise ExtractionError("No face detected")
        if len(results) > 1:
            logger.warning("Multiple faces detected: %d", len(results))
            raise ExtractionError(f"Multiple faces detected: {len(results)}")

        embedding = results[0]["embedding"]
        if len(embedding) != self.dimensions:
            raise ExtractionError(
                f"Model produced {len(embedding)} dimensions, expected {self.dimensions}"
            )
        return embedding
