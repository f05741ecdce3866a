import os

# Must be set before anything imports transport_planner.database / settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ROUTING_PROVIDER"] = "none"
os.environ.pop("REDIS_URL", None)
os.environ["SOLVER_TIME_LIMIT_SECONDS"] = "1"

import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from transport_planner.database import Base
from transport_planner.models import (
    Driver,
    DriverAvailability,
    DriverServiceType,
    ServiceLocation,
    ServiceLocationException,
    ServiceLocationOpeningHours,
    ServiceType,
    SystemCostSettings,
    TravelTimeRegion,
)

OWNER_ID = 1
# Wednesday
PLAN_DATE = datetime.date(2025, 3, 5)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service_type(db):
    st = ServiceType(code="INSPECT", name="Inspection")
    db.add(st)
    db.commit()
    db.refresh(st)
    return st


@pytest.fixture
def make_service_type(db):
    def _make(code, name=None):
        st = ServiceType(code=code, name=name or code.title())
        db.add(st)
        db.commit()
        db.refresh(st)
        return st
    return _make


@pytest.fixture
def make_driver(db):
    def _make(
        name="Driver",
        lat=52.0,
        lng=5.0,
        start_minute=8 * 60,
        end_minute=17 * 60,
        plan_date=PLAN_DATE,
        service_type_ids=(),
        owner_id=OWNER_ID,
        max_work_minutes=480,
        available=True,
        is_active=True,
    ):
        driver = Driver(
            owner_id=owner_id,
            name=name,
            start_latitude=lat,
            start_longitude=lng,
            max_work_minutes_per_day=max_work_minutes,
            is_active=is_active,
        )
        db.add(driver)
        db.flush()
        for st_id in service_type_ids:
            db.add(DriverServiceType(driver_id=driver.id, service_type_id=st_id))
        if available:
            db.add(DriverAvailability(
                driver_id=driver.id,
                date=plan_date,
                start_minute_of_day=start_minute,
                end_minute_of_day=end_minute,
            ))
        db.commit()
        db.refresh(driver)
        return driver
    return _make


@pytest.fixture
def make_location(db, service_type):
    def _make(
        name="Location",
        lat=52.01,
        lng=5.01,
        service_minutes=20,
        due_date=PLAN_DATE,
        priority_date=None,
        service_type_id=None,
        owner_id=OWNER_ID,
        opening_hours=(),
        exceptions=(),
    ):
        location = ServiceLocation(
            owner_id=owner_id,
            service_type_id=service_type_id or service_type.id,
            name=name,
            latitude=lat,
            longitude=lng,
            due_date=due_date,
            priority_date=priority_date,
            service_minutes=service_minutes,
        )
        db.add(location)
        db.flush()
        for hours in opening_hours:
            db.add(ServiceLocationOpeningHours(service_location_id=location.id, **hours))
        for exception in exceptions:
            db.add(ServiceLocationException(service_location_id=location.id, **exception))
        db.commit()
        db.refresh(location)
        return location
    return _make


@pytest.fixture
def cost_settings_row(db):
    row = SystemCostSettings(owner_id=OWNER_ID, fuel_cost_per_km=0.2, personnel_cost_per_hour=20.0)
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def global_region(db):
    region = TravelTimeRegion(
        id=99,
        name="World",
        bbox_min_lat=-90,
        bbox_min_lon=-180,
        bbox_max_lat=90,
        bbox_max_lon=180,
        priority=0,
    )
    db.add(region)
    db.commit()
    return region
