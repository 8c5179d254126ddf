# timeclock_api/services/face_matcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from timeclock_api.services.face_engine import compute_similarity

logger = logging.getLogger(__name__)

# Terminal login accepts a looser score than administrative re-verification.
LOGIN_THRESHOLD = 0.70
VERIFY_THRESHOLD = 0.80

MATCH = "MATCH"
NO_MATCH = "NO_MATCH"
EMPTY_GALLERY = "EMPTY_GALLERY"
INCOMPATIBLE_ENROLLMENT = "INCOMPATIBLE_ENROLLMENT"


@dataclass(frozen=True)
class GalleryEntry:
    """Snapshot of one active employee joined with their face enrollment."""
    employee_id: int
    employee_number: str
    name: str
    location_id: Optional[int]
    vector: Tuple[float, ...]
    version: Optional[str]
    updated_at: Optional[datetime] = None

    @property
    def dimensions(self) -> int:
        return len(self.vector)


@dataclass(frozen=True)
class Match:
    entry: GalleryEntry
    similarity: float


@dataclass(frozen=True)
class MatchReport:
    """
    Outcome of one gallery search.

    ``status`` tells a plain miss (NO_MATCH) apart from a gallery that had
    nothing comparable in it (EMPTY_GALLERY, INCOMPATIBLE_ENROLLMENT), so the
    kiosk can ask for re-enrollment instead of another attempt.
    """
    status: str
    match: Optional[Match] = None
    best_similarity: Optional[float] = None
    compared: int = 0
    skipped: int = 0


class SimilarityMatcher:
    def __init__(self, dimensions: int, version: Optional[str] = None):
        self.dimensions = dimensions
        self.version = version

    def is_compatible(self, entry: GalleryEntry) -> bool:
        """
        The version tag is the primary check; entries enrolled before tags
        existed (tag missing) fall back to the dimension check alone. A
        dimension mismatch always disqualifies.
        """
        if entry.dimensions != self.dimensions:
            return False
        if self.version and entry.version and entry.version != self.version:
            return False
        return True

    def match(self, probe, gallery: Iterable[GalleryEntry], threshold: float) -> MatchReport:
        if threshold is None:
            raise ValueError("threshold must be given explicitly")
        if len(probe) != self.dimensions:
            raise ValueError(f"probe has {len(probe)} dimensions, expected {self.dimensions}")

        best: Optional[Match] = None
        compared = skipped = 0

        for entry in gallery:
            if not self.is_compatible(entry):
                skipped += 1
                logger.warning(
                    "Skipping enrollment of employee %s: version=%s dim=%d (expected version=%s dim=%d)",
                    entry.employee_id, entry.version, entry.dimensions, self.version, self.dimensions,
                )
                continue

            compared += 1
            sim = compute_similarity(probe, entry.vector)
            logger.debug("Similarity with employee %s: %.4f", entry.employee_id, sim)
            # strict '>' keeps the first of equal scores
            if best is None or sim > best.similarity:
                best = Match(entry=entry, similarity=sim)

        if best is None:
            status = INCOMPATIBLE_ENROLLMENT if skipped else EMPTY_GALLERY
            logger.info("No comparable enrollments (skipped %d)", skipped)
            return MatchReport(status=status, compared=compared, skipped=skipped)

        if best.similarity >= threshold:
            logger.info("Best match: employee %s with similarity %.4f",
                        best.entry.employee_id, best.similarity)
            return MatchReport(status=MATCH, match=best, best_similarity=best.similarity,
                               compared=compared, skipped=skipped)

        logger.info("No match found above threshold %.2f (best %.4f)", threshold, best.similarity)
        return MatchReport(status=NO_MATCH, best_similarity=best.similarity,
                           compared=compared, skipped=skipped)

    def find_best_match(self, probe, gallery: Iterable[GalleryEntry], threshold: float) -> Optional[Match]:
        return self.match(probe, gallery, threshold).match


def find_best_match(probe, gallery: List[GalleryEntry], threshold: float,
                    version: Optional[str] = None) -> Optional[Match]:
    """Convenience wrapper taking the expected dimension from the probe."""
    return SimilarityMatcher(len(probe), version).find_best_match(probe, gallery, threshold)
