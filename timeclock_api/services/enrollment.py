# timeclock_api/services/enrollment.py
import logging
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from timeclock_api.extensions import db
from timeclock_api.models.employee import Employee
from timeclock_api.models.face_profile import FaceProfile
from timeclock_api.services.errors import ExtractionError, NotFoundError, PersistenceError, QualityRejected
from timeclock_api.services.face_quality import FaceQualityGate
from timeclock_api.services.face_matcher import GalleryEntry
from timeclock_api.services.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class EnrollmentStore:
    """
    One face enrollment per employee.

    ``enroll`` creates the profile on first registration and overwrites it
    wholesale on re-registration, inside a single commit. ``get_gallery``
    hands out frozen snapshots, so a match running while an administrator
    re-enrolls someone sees either the old or the new vector.
    """

    def enroll(self, employee_id: int, vector: Sequence[float], version: str,
               reference_image: Optional[str] = None, now: Optional[datetime] = None) -> FaceProfile:
        emp = db.session.get(Employee, employee_id)
        if not emp or not emp.is_active:
            raise NotFoundError("Employee not found or inactive", employee_id=employee_id)

        now = now or datetime.utcnow()
        embedding = [float(x) for x in vector]

        try:
            profile = FaceProfile.query.filter_by(employee_id=employee_id).first()
            created = profile is None
            if created:
                profile = FaceProfile(employee_id=employee_id, created_at=now)
                db.session.add(profile)

            profile.embedding = embedding
            profile.embedding_version = version
            profile.image_url = reference_image
            profile.updated_at = now
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Could not store face profile for employee %s", employee_id)
            raise PersistenceError(f"Could not store face profile: {e}") from e

        logger.info("Face profile %s for employee %s (version=%s, dim=%d)",
                    "created" if created else "replaced", employee_id, version, len(embedding))
        return profile

    def get(self, employee_id: int) -> Optional[FaceProfile]:
        return FaceProfile.query.filter_by(employee_id=employee_id).first()

    def get_gallery(self, location_id: Optional[int] = None) -> List[GalleryEntry]:
        """Enrollments of active employees, optionally scoped to one location."""
        q = (
            db.session.query(FaceProfile, Employee)
            .join(Employee, Employee.id == FaceProfile.employee_id)
            .filter(Employee.is_active.is_(True))
        )
        if location_id is not None:
            q = q.filter(Employee.location_id == location_id)

        try:
            rows = q.order_by(Employee.id).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Could not load face gallery: {e}") from e

        return [
            GalleryEntry(
                employee_id=emp.id,
                employee_number=emp.employee_number,
                name=emp.full_name,
                location_id=emp.location_id,
                vector=tuple(float(x) for x in (profile.embedding or [])),
                version=profile.embedding_version,
                updated_at=profile.updated_at,
            )
            for profile, emp in rows
        ]


def register_face(employee_id: int, frame, extractor, store: Optional[EnrollmentStore] = None,
                  quality_gate=None, reference_image: Optional[str] = None,
                  extraction_timeout: Optional[float] = None) -> FaceProfile:
    """
    Capture -> quality gate -> embedding -> create or replace the enrollment.

    Nothing is stored when the gate or the extraction fails.
    """
    gate = quality_gate or FaceQualityGate()
    if not gate.has_usable_face(frame):
        raise QualityRejected("No usable face in the picture, please position your face in the camera")

    try:
        vector = call_with_timeout(extractor.extract, extraction_timeout, frame)
    except FutureTimeout:
        raise ExtractionError(f"Face recognition timed out after {extraction_timeout}s")
    return (store or EnrollmentStore()).enroll(employee_id, vector, extractor.version, reference_image)
