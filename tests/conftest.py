"""
Shared fixtures: in-memory SQLite database and record factories.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from app.models import Child, Family, Preference  # noqa: E402

# Austin, TX
BASE_LAT = 30.2672
BASE_LON = -97.7431

# One degree of latitude is ~69.1 miles
MILES_PER_DEGREE_LAT = 69.09


def lat_offset(miles: float) -> float:
    """Latitude that lies roughly `miles` north of BASE_LAT."""
    return BASE_LAT + miles / MILES_PER_DEGREE_LAT


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_child(db):
    """Create a placeable child; keyword arguments override the defaults."""
    def _make(**overrides):
        values = dict(
            name="Child",
            status="Needs Placement",
            age=8,
            gender="Female",
            jurisdiction="Travis",
            preferred_jurisdiction=None,
            special_needs_level=0,
            sibling_group_size=1,
            latitude=BASE_LAT,
            longitude=BASE_LON,
        )
        values.update(overrides)
        child = Child(**values)
        db.add(child)
        db.commit()
        return child
    return _make


@pytest.fixture
def make_family(db):
    """Create a fully approved family; keyword arguments override the defaults."""
    def _make(**overrides):
        values = dict(
            name="Family",
            license_status="Active",
            background_check_status="Approved",
            training_status="Complete",
            capacity=2,
            special_needs_level_supported=3,
            jurisdiction="Travis",
            city="Austin",
            state="TX",
            latitude=lat_offset(5),
            longitude=BASE_LON,
        )
        values.update(overrides)
        family = Family(**values)
        db.add(family)
        db.commit()
        return family
    return _make


@pytest.fixture
def make_preference(db):
    """Create an active preference for a family."""
    def _make(family, **overrides):
        values = dict(
            family_id=family.id,
            status="Active",
            age_min=5,
            age_max=12,
            preferred_gender=None,
            gender_flexible=False,
            jurisdiction=None,
        )
        values.update(overrides)
        preference = Preference(**values)
        db.add(preference)
        db.commit()
        return preference
    return _make
