import dataclasses
from datetime import datetime

import numpy as np
import pytest

from timeclock_api.extensions import db
from timeclock_api.models.face_profile import FaceProfile
from timeclock_api.models.master import Location
from timeclock_api.services.enrollment import EnrollmentStore, register_face
from timeclock_api.services.errors import ExtractionError, NotFoundError, QualityRejected
from timeclock_api.services.face_matcher import SimilarityMatcher

from conftest import StubExtractor, gray_frame, make_employee

V1 = np.ones(1000)
V2 = np.array([1.0 if i % 2 == 0 else -1.0 for i in range(1000)])  # orthogonal to V1


def test_enroll_then_reenroll_replaces_the_single_profile(app, berlin):
    loc, _ = berlin
    emp = make_employee(loc)
    store = EnrollmentStore()

    first = store.enroll(emp.id, [1.0, 0.0], "transformers-v1", "img-a", now=datetime(2026, 1, 1))
    second = store.enroll(emp.id, [0.0, 1.0, 0.0], "deepface-v1", "img-b", now=datetime(2026, 2, 1))

    assert FaceProfile.query.count() == 1
    assert second.id == first.id
    row = db.session.get(FaceProfile, first.id)
    assert row.embedding == [0.0, 1.0, 0.0]
    assert row.embedding_version == "deepface-v1"
    assert row.image_url == "img-b"
    assert row.created_at == datetime(2026, 1, 1)
    assert row.updated_at == datetime(2026, 2, 1)


def test_enroll_unknown_or_inactive_employee(app, berlin):
    loc, _ = berlin
    inactive = make_employee(loc, number="E9", barcode="EMP-E9", active=False)
    store = EnrollmentStore()
    with pytest.raises(NotFoundError):
        store.enroll(4242, [1.0], "v1")
    with pytest.raises(NotFoundError):
        store.enroll(inactive.id, [1.0], "v1")
    assert FaceProfile.query.count() == 0


def test_gallery_contains_active_employees_of_the_scope_only(app, berlin):
    loc, _ = berlin
    other = Location(name="L2")
    db.session.add(other); db.session.commit()

    a = make_employee(loc, number="A", barcode="A")
    b = make_employee(loc, number="B", barcode="B")
    c = make_employee(other, number="C", barcode="C")
    store = EnrollmentStore()
    for emp in (a, b, c):
        store.enroll(emp.id, [1.0, 2.0], "v1")
    b.is_active = False
    db.session.commit()

    scoped = store.get_gallery(loc.id)
    assert [e.employee_id for e in scoped] == [a.id]
    assert scoped[0].vector == (1.0, 2.0)
    assert scoped[0].version == "v1"
    assert {e.employee_id for e in store.get_gallery()} == {a.id, c.id}

    with pytest.raises(dataclasses.FrozenInstanceError):
        scoped[0].vector = (0.0, 0.0)


def test_gallery_snapshot_is_not_changed_by_a_later_reenrollment(app, berlin):
    loc, _ = berlin
    emp = make_employee(loc)
    store = EnrollmentStore()
    store.enroll(emp.id, [1.0, 0.0], "v1")

    snapshot = store.get_gallery(loc.id)
    store.enroll(emp.id, [0.0, 1.0], "v1")

    assert snapshot[0].vector == (1.0, 0.0)
    assert store.get_gallery(loc.id)[0].vector == (0.0, 1.0)


def test_reenrollment_fully_replaces_the_matching_vector(app, berlin):
    loc, _ = berlin
    emp = make_employee(loc)
    store = EnrollmentStore()
    matcher = SimilarityMatcher(1000, "transformers-v1")

    store.enroll(emp.id, V1, "transformers-v1")
    m = matcher.find_best_match(V1, store.get_gallery(loc.id), 0.70)
    assert m is not None
    assert m.entry.employee_id == emp.id
    assert m.similarity == pytest.approx(1.0)

    store.enroll(emp.id, V2, "transformers-v1")
    assert matcher.find_best_match(V1, store.get_gallery(loc.id), 0.70) is None


def test_register_face_runs_gate_and_extractor(app, berlin):
    loc, _ = berlin
    emp = make_employee(loc)
    ext = StubExtractor([3.0, 4.0])

    profile = register_face(emp.id, gray_frame(), ext, reference_image="data:image/jpeg;base64,xx")
    assert profile.embedding == pytest.approx([0.6, 0.8])
    assert profile.embedding_version == "stub-v1"


def test_register_face_stores_nothing_on_bad_frame_or_failed_extraction(app, berlin):
    loc, _ = berlin
    emp = make_employee(loc)

    ext = StubExtractor([3.0, 4.0])
    with pytest.raises(QualityRejected):
        register_face(emp.id, gray_frame(5), ext)
    assert ext.calls == 0

    with pytest.raises(ExtractionError):
        register_face(emp.id, gray_frame(), StubExtractor(RuntimeError("boom"), dimensions=2))

    assert FaceProfile.query.count() == 0
