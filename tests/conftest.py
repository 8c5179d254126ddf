import os

import numpy as np
import pytest

from timeclock_api import create_app
from timeclock_api.extensions import db
from timeclock_api.models.employee import Employee
from timeclock_api.models.master import Location, Terminal
from timeclock_api.services.face_engine import EmbeddingExtractor


class StubExtractor(EmbeddingExtractor):
    """Deterministic extractor: returns whatever raw vector the test queued."""

    version = "stub-v1"

    def __init__(self, raw=None, dimensions=None):
        self.raw = raw
        self.dimensions = dimensions if dimensions is not None else len(raw or [])
        self.calls = 0
        self.on_extract = None

    def _raw_embedding(self, frame):
        self.calls += 1
        if self.on_extract:
            self.on_extract()
        if isinstance(self.raw, Exception):
            raise self.raw
        return self.raw


def gray_frame(level=128, h=48, w=64):
    return np.full((h, w, 3), level, dtype=np.uint8)


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["FACE_WARMUP"] = "0"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def berlin(app):
    """Location L1 with a 50 m fence around (52.5200, 13.4050) and a kiosk on it."""
    loc = Location(name="L1", latitude=52.5200, longitude=13.4050, geofence_radius_meters=50)
    db.session.add(loc); db.session.commit()

    term = Terminal(name="Kiosk L1", username="kiosk-l1", location_id=loc.id)
    term.set_password("secret")
    db.session.add(term); db.session.commit()
    return loc, term


def make_employee(location, number="E1", barcode="EMP-E1", active=True, default_break=None):
    emp = Employee(
        employee_number=number,
        first_name=number,
        last_name="Tester",
        barcode=barcode,
        location_id=location.id if location else None,
        is_active=active,
        default_break_minutes=default_break,
    )
    db.session.add(emp); db.session.commit()
    return emp
