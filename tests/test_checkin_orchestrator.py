import time
from datetime import datetime, timedelta

import numpy as np
import pytest
from sqlalchemy.exc import OperationalError

from timeclock_api.extensions import db
from timeclock_api.models.checkin_log import CheckInLog
from timeclock_api.models.time_entry import TimeEntry
from timeclock_api.services.checkin import CheckInOrchestrator, CheckInRequest
from timeclock_api.services.attendance import AttendanceStore
from timeclock_api.services.enrollment import EnrollmentStore
from timeclock_api.services.geofence import LatLon, reported_position

from conftest import StubExtractor, gray_frame, make_employee

NOW = datetime(2026, 10, 19, 7, 30)
AT_CENTER = LatLon(52.5200, 13.4050)
AWAY_200M = LatLon(52.5200 + 200 / 111194.93, 13.4050)


def _orch(term, extractor=None, **kw):
    kw.setdefault("clock", lambda: NOW)
    return CheckInOrchestrator(
        extractor or StubExtractor([1.0, 0.0, 0.0]),
        location_id=term.location_id,
        terminal_id=term.id,
        threshold=0.70,
        default_break_minutes=45,
        **kw,
    )


def _token(code="EMP-E1", position=AT_CENTER, **kw):
    return CheckInRequest(token=code, position=lambda: position, **kw)


def _no_position():
    raise AssertionError("check-out must not ask for a position")


def _open_entries(emp_id):
    return TimeEntry.query.filter_by(employee_id=emp_id, check_out=None).all()


# ---------- end-to-end ----------

def test_berlin_scenario(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    orch = _orch(term)

    denied = orch.process(_token(position=AWAY_200M))
    assert denied.success is False
    assert denied.reason_code == "GEOFENCE_DENIED"
    assert denied.distance_m == pytest.approx(200, abs=1)
    assert TimeEntry.query.count() == 0

    ok = orch.process(_token(position=AT_CENTER))
    assert ok.success is True
    assert ok.reason_code == "CHECKED_IN"
    assert ok.action == "IN"
    entry = _open_entries(emp.id)[0]
    assert entry.check_in == NOW

    later = NOW + timedelta(hours=8)
    out = _orch(term, clock=lambda: later).process(CheckInRequest(token="EMP-E1", position=_no_position))
    assert out.success is True
    assert out.reason_code == "CHECKED_OUT"
    db.session.refresh(entry)
    assert entry.check_out == later
    assert entry.break_duration_minutes == 45
    assert _open_entries(emp.id) == []


def test_second_scan_routes_to_check_out_instead_of_opening_twice(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    orch = _orch(term)

    assert orch.process(_token()).action == "IN"
    second = orch.process(_token())
    assert second.action == "OUT"
    assert len(_open_entries(emp.id)) == 0
    assert TimeEntry.query.filter_by(employee_id=emp.id).count() == 1


def test_explicit_directions_are_enforced(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    orch = _orch(term)

    assert orch.process(_token(direction="out")).reason_code == "NOT_CHECKED_IN"
    assert orch.process(_token(direction="in")).reason_code == "CHECKED_IN"
    again = orch.process(_token(direction="in"))
    assert again.reason_code == "ALREADY_CHECKED_IN"
    assert len(_open_entries(emp.id)) == 1
    assert orch.process(_token(direction="sideways")).reason_code == "INVALID_REQUEST"


def test_check_out_ignores_the_geofence(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    db.session.add(TimeEntry(employee_id=emp.id, check_in=NOW - timedelta(hours=3)))
    db.session.commit()

    # far away and without any position at all
    res = _orch(term).process(CheckInRequest(token="EMP-E1", position=reported_position(None, None, "denied")))
    assert res.success is True
    assert res.action == "OUT"


def test_unavailable_position_fails_closed(app, berlin):
    loc, term = berlin
    make_employee(loc)

    res = _orch(term).process(CheckInRequest(token="EMP-E1", position=reported_position(None, None, "denied")))
    assert res.reason_code == "POSITION_UNAVAILABLE"
    assert res.distance_m is None
    assert res.rearm is True
    assert TimeEntry.query.count() == 0

    res = _orch(term).process(CheckInRequest(token="EMP-E1"))
    assert res.reason_code == "POSITION_UNAVAILABLE"


def test_slow_position_fix_times_out(app, berlin):
    loc, term = berlin
    make_employee(loc)

    def slow():
        time.sleep(0.5)
        return AT_CENTER

    res = _orch(term, position_timeout=0.05).process(CheckInRequest(token="EMP-E1", position=slow))
    assert res.reason_code == "POSITION_UNAVAILABLE"
    assert "Timed out" in res.detail


def test_location_without_geofence_allows_everything(app, berlin):
    loc, term = berlin
    loc.geofence_radius_meters = None
    db.session.commit()
    make_employee(loc)

    res = _orch(term).process(CheckInRequest(token="EMP-E1", position=_no_position))
    assert res.reason_code == "CHECKED_IN"


# ---------- identity resolution ----------

def test_unknown_and_inactive_tokens(app, berlin):
    loc, term = berlin
    make_employee(loc, number="E2", barcode="EMP-E2", active=False)
    orch = _orch(term)

    unknown = orch.process(_token("NOPE"))
    assert unknown.reason_code == "UNKNOWN_TOKEN"
    assert unknown.rearm is True

    inactive = orch.process(_token("EMP-E2"))
    assert inactive.reason_code == "IDENTITY_INACTIVE"
    assert inactive.rearm is False
    assert TimeEntry.query.count() == 0


def test_token_lookup_is_exact(app, berlin):
    loc, term = berlin
    make_employee(loc)
    assert _orch(term).process(_token("emp-e1")).reason_code == "UNKNOWN_TOKEN"
    assert _orch(term).process(_token("  EMP-E1 ")).reason_code == "CHECKED_IN"


def test_face_check_in(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    other = make_employee(loc, number="E2", barcode="EMP-E2")
    EnrollmentStore().enroll(emp.id, [1.0, 0.0, 0.0], "stub-v1")
    EnrollmentStore().enroll(other.id, [0.0, 1.0, 0.0], "stub-v1")

    res = _orch(term, StubExtractor([2.0, 0.1, 0.0])).process(
        CheckInRequest(frame=gray_frame(), position=lambda: AT_CENTER))
    assert res.success is True
    assert res.employee["id"] == emp.id
    assert res.similarity > 0.99

    log = CheckInLog.query.filter_by(result="MARKED").one()
    assert log.method == "FACE"
    assert log.time_entry_id == _open_entries(emp.id)[0].id


def test_face_below_threshold_is_no_match(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    EnrollmentStore().enroll(emp.id, [1.0, 0.0, 0.0], "stub-v1")

    res = _orch(term, StubExtractor([1.0, 1.0, 0.0])).process(
        CheckInRequest(frame=gray_frame(), position=lambda: AT_CENTER))
    assert res.reason_code == "NO_MATCH"
    assert res.similarity == pytest.approx(np.sqrt(0.5))
    assert TimeEntry.query.count() == 0


def test_dark_frame_is_rejected_before_extraction(app, berlin):
    _, term = berlin
    ext = StubExtractor([1.0, 0.0, 0.0])
    res = _orch(term, ext).process(CheckInRequest(frame=gray_frame(3)))
    assert res.reason_code == "QUALITY_REJECTED"
    assert ext.calls == 0


def test_extraction_failure_and_timeout(app, berlin):
    _, term = berlin
    broken = StubExtractor(RuntimeError("model crashed"), dimensions=3)
    assert _orch(term, broken).process(CheckInRequest(frame=gray_frame())).reason_code == "EXTRACTION_ERROR"

    slow = StubExtractor([1.0, 0.0, 0.0])
    slow.on_extract = lambda: time.sleep(0.5)
    res = _orch(term, slow, extraction_timeout=0.05).process(CheckInRequest(frame=gray_frame()))
    assert res.reason_code == "EXTRACTION_ERROR"
    assert "timed out" in res.detail


def test_gallery_of_an_older_model_asks_for_reenrollment(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    EnrollmentStore().enroll(emp.id, [1.0] * 1000, "transformers-v1")

    res = _orch(term).process(CheckInRequest(frame=gray_frame(), position=lambda: AT_CENTER))
    assert res.reason_code == "INCOMPATIBLE_ENROLLMENT"
    assert res.rearm is True


def test_empty_gallery_is_a_no_match_with_reason(app, berlin):
    _, term = berlin
    res = _orch(term).process(CheckInRequest(frame=gray_frame()))
    assert res.reason_code == "NO_MATCH"
    assert res.to_dict()["reason"] == "EMPTY_GALLERY"


def test_request_without_token_or_frame(app, berlin):
    _, term = berlin
    assert _orch(term).process(CheckInRequest()).reason_code == "INVALID_REQUEST"


# ---------- robustness ----------

def test_scan_during_a_scan_is_ignored(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    EnrollmentStore().enroll(emp.id, [1.0, 0.0, 0.0], "stub-v1")

    ext = StubExtractor([1.0, 0.0, 0.0])
    orch = _orch(term, ext, extraction_timeout=None)
    nested = []
    ext.on_extract = lambda: nested.append(orch.process(_token()))

    res = orch.process(CheckInRequest(frame=gray_frame(), position=lambda: AT_CENTER))

    assert nested[0].reason_code == "BUSY"
    assert res.reason_code == "CHECKED_IN"
    assert len(_open_entries(emp.id)) == 1
    assert orch.busy is False


def test_several_open_intervals_close_the_latest_and_flag_it(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    old = TimeEntry(employee_id=emp.id, check_in=NOW - timedelta(days=2))
    new = TimeEntry(employee_id=emp.id, check_in=NOW - timedelta(hours=2))
    db.session.add_all([old, new]); db.session.commit()

    res = _orch(term).process(_token())
    assert res.action == "OUT"
    assert res.anomaly is True
    assert res.time_entry["id"] == new.id
    assert db.session.get(TimeEntry, old.id).check_out is None
    assert CheckInLog.query.filter_by(anomaly=True).count() == 1


def test_employee_default_break_wins_over_terminal_default(app, berlin):
    loc, term = berlin
    emp = make_employee(loc, default_break=30)
    db.session.add(TimeEntry(employee_id=emp.id, check_in=NOW - timedelta(hours=8)))
    db.session.commit()

    res = _orch(term).process(_token())
    assert res.time_entry["break_duration_minutes"] == 30


def test_failed_write_leaves_no_interval_behind(app, berlin, monkeypatch):
    loc, term = berlin
    emp = make_employee(loc)

    real_commit = db.session.commit
    calls = {"n": 0}

    def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("INSERT", {}, Exception("connection lost"))
        return real_commit()

    monkeypatch.setattr(db.session, "commit", flaky_commit)
    res = _orch(term).process(_token())
    monkeypatch.undo()

    assert res.success is False
    assert res.reason_code == "PERSISTENCE_ERROR"
    assert res.rearm is True
    assert _open_entries(emp.id) == []
    log = CheckInLog.query.one()
    assert log.result == "REJECTED"
    assert log.reason_code == "PERSISTENCE_ERROR"


def test_every_attempt_is_audited(app, berlin):
    loc, term = berlin
    make_employee(loc)
    orch = _orch(term)
    orch.process(_token(position=AWAY_200M))
    orch.process(_token())

    rows = CheckInLog.query.order_by(CheckInLog.id).all()
    assert [(r.result, r.reason_code) for r in rows] == [
        ("REJECTED", "GEOFENCE_DENIED"),
        ("MARKED", "CHECKED_IN"),
    ]
    assert rows[0].distance_m == pytest.approx(200, abs=1)
    assert rows[0].terminal_id == term.id


def test_non_finite_position_is_unavailable_not_denied(app, berlin):
    loc, term = berlin
    make_employee(loc)

    res = _orch(term).process(_token(position=LatLon(float("nan"), float("nan"))))
    assert res.reason_code == "POSITION_UNAVAILABLE"
    assert res.to_dict()["distance_m"] is None
    assert TimeEntry.query.count() == 0


def test_non_string_token_is_an_invalid_request(app, berlin):
    loc, term = berlin
    make_employee(loc)

    res = _orch(term).process(CheckInRequest(token=12345, position=lambda: AT_CENTER))
    assert res.success is False
    assert res.reason_code == "INVALID_REQUEST"
    assert res.rearm is True
    log = CheckInLog.query.one()
    assert (log.result, log.reason_code, log.method) == ("REJECTED", "INVALID_REQUEST", "TOKEN")


def test_unexpected_error_comes_back_as_a_result(app, berlin, monkeypatch):
    loc, term = berlin
    make_employee(loc)
    orch = _orch(term)

    def boom(token):
        raise KeyError("registry blew up")

    monkeypatch.setattr(orch.registry, "lookup_by_token", boom)
    res = orch.process(_token())

    assert res.success is False
    assert res.reason_code == "INTERNAL_ERROR"
    assert res.rearm is True
    assert orch.busy is False
    assert CheckInLog.query.filter_by(reason_code="INTERNAL_ERROR").count() == 1


class _RecordingAttendance(AttendanceStore):
    def __init__(self):
        self.calls = []

    def lock_employee(self, employee_id):
        self.calls.append(("lock", employee_id))
        super().lock_employee(employee_id)

    def find_open(self, employee_id):
        self.calls.append(("find_open", employee_id))
        return super().find_open(employee_id)


def test_employee_row_is_locked_before_the_open_interval_is_read(app, berlin):
    loc, term = berlin
    emp = make_employee(loc)
    store = _RecordingAttendance()

    assert _orch(term, attendance=store).process(_token()).reason_code == "CHECKED_IN"
    assert store.calls[:2] == [("lock", emp.id), ("find_open", emp.id)]
