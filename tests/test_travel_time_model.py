import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from transport_planner.core.config import Settings
from transport_planner.models.travel_time import (
    DayType,
    LearnedTravelStats,
    LearnedTravelStatStatus,
    RegionSpeedProfile,
    TravelTimeRegion,
)
from transport_planner.services.planning_engine.travel_time_model import (
    MAX_MERGE_ATTEMPTS,
    TravelTimeModel,
    assess_quality,
    day_type_for,
    distance_band,
    hour_bucket,
    is_suspicious_sample,
    round_half_away_from_zero,
    select_region,
    should_quarantine,
    utc_now,
)

WEDNESDAY = datetime.date(2025, 3, 5)


def region(id, priority, min_lat, min_lon, max_lat, max_lon):
    return SimpleNamespace(
        id=id, priority=priority,
        bbox_min_lat=min_lat, bbox_min_lon=min_lon, bbox_max_lat=max_lat, bbox_max_lon=max_lon,
    )


def test_key_helpers():
    assert distance_band(3) == (0.0, 5.0)
    assert distance_band(5) == (5.0, 15.0)
    assert distance_band(20000) == (120.0, 10000.0)
    assert hour_bucket(8 * 60 + 59) == (8, 9)
    assert hour_bucket(-10) == (0, 1)
    assert hour_bucket(24 * 60) == (23, 24)
    assert day_type_for(WEDNESDAY) == DayType.weekday
    assert day_type_for(datetime.date(2025, 3, 8)) == DayType.weekend
    assert round_half_away_from_zero(2.5) == 3
    assert round_half_away_from_zero(-2.5) == -3


def test_suspicious_samples():
    assert is_suspicious_sample(95, 19.0, (0.0, 5.0))
    assert is_suspicious_sample(8, 0.2, (30.0, 60.0))
    assert is_suspicious_sample(70, 7.0, (5.0, 15.0))
    assert not is_suspicious_sample(12, 1.2, (5.0, 15.0))


def test_select_region_priority_tie_and_fallback():
    world = region(99, 0, -90, -180, 90, 180)
    country = region(5, 1, 50, 3, 54, 8)
    city_a = region(8, 10, 51.9, 4.9, 52.1, 5.1)
    city_b = region(7, 10, 51.9, 4.9, 52.1, 5.1)
    regions = [world, country, city_a, city_b]

    assert select_region(regions, 52.0, 5.0, 99).id == 7
    assert select_region(regions, 53.0, 6.0, 99).id == 5
    assert select_region(regions, 10.0, 10.0, 99).id == 99
    assert select_region([country], 10.0, 10.0, 99) is None


def test_estimate_minutes_hard_default_without_regions(db):
    model = TravelTimeModel(db)
    assert model.estimate_minutes(WEDNESDAY, 480, 10.0, 52.0, 5.0, 52.1, 5.1) == 12
    assert model.estimate_minutes(WEDNESDAY, 480, 0.0, 52.0, 5.0, 52.0, 5.0) == 0


def test_estimate_minutes_uses_region_profile_then_catch_all(db, global_region):
    city = TravelTimeRegion(
        id=1, name="City", bbox_min_lat=51.9, bbox_min_lon=4.9, bbox_max_lat=52.2, bbox_max_lon=5.2, priority=5
    )
    db.add(city)
    db.add(RegionSpeedProfile(
        region_id=1, day_type=DayType.weekday, bucket_start_hour=8, bucket_end_hour=9, avg_minutes_per_km=2.0
    ))
    db.add(RegionSpeedProfile(
        region_id=99, day_type=DayType.weekday, bucket_start_hour=9, bucket_end_hour=10, avg_minutes_per_km=1.5
    ))
    db.commit()

    model = TravelTimeModel(db)
    assert model.estimate_minutes(WEDNESDAY, 8 * 60, 10.0, 52.0, 5.0, 52.1, 5.1) == 20
    # City has no 9-10 profile; catch-all region does
    assert model.estimate_minutes(WEDNESDAY, 9 * 60, 10.0, 52.0, 5.0, 52.1, 5.1) == 15
    # Nothing for 10-11 anywhere
    assert model.estimate_minutes(WEDNESDAY, 10 * 60, 10.0, 52.0, 5.0, 52.1, 5.1) == 12


def test_estimate_minutes_non_decreasing_in_distance(db, global_region):
    db.add(RegionSpeedProfile(
        region_id=99, day_type=DayType.weekday, bucket_start_hour=8, bucket_end_hour=9, avg_minutes_per_km=1.3
    ))
    db.commit()
    model = TravelTimeModel(db)

    estimates = [
        model.estimate_minutes(WEDNESDAY, 8 * 60, step / 2, 52.0, 5.0, 52.1, 5.1)
        for step in range(0, 200)
    ]
    assert estimates == sorted(estimates)


def test_multi_hour_profile_covers_departure_hour(db, global_region):
    db.add(RegionSpeedProfile(
        region_id=99, day_type=DayType.weekday, bucket_start_hour=6, bucket_end_hour=9, avg_minutes_per_km=2.0
    ))
    db.add(RegionSpeedProfile(
        region_id=99, day_type=DayType.weekday, bucket_start_hour=0, bucket_end_hour=24, avg_minutes_per_km=1.5
    ))
    db.commit()
    model = TravelTimeModel(db)

    # 07:30 falls in both; the narrower 6-9 profile wins
    assert model.estimate_minutes(WEDNESDAY, 7 * 60 + 30, 10.0, 52.0, 5.0, 52.1, 5.1) == 20
    assert model.estimate_minutes(WEDNESDAY, 9 * 60, 10.0, 52.0, 5.0, 52.1, 5.1) == 15
    assert model.baseline_minutes_per_km(99, DayType.weekday, 8, 9) == (2.0, "profile")


def test_estimate_non_decreasing_across_learned_bands(db, global_region):
    for band, avg in (((0.0, 5.0), 3.0), ((5.0, 15.0), 1.0)):
        db.add(LearnedTravelStats(
            region_id=99, day_type=DayType.weekday, bucket_start_hour=8, bucket_end_hour=9,
            distance_band_km_min=band[0], distance_band_km_max=band[1],
            sample_count=40, total_sample_count=40, suspicious_sample_count=0,
            avg_minutes_per_km=avg, last_sample_at_utc=utc_now(), status=LearnedTravelStatStatus.approved,
        ))
    db.commit()
    model = TravelTimeModel(db)

    assert model.estimate_minutes(WEDNESDAY, 8 * 60, 4.9, 52.0, 5.0, 52.1, 5.1) == 15
    assert model.estimate_minutes(WEDNESDAY, 8 * 60, 5.0, 52.0, 5.0, 52.1, 5.1) == 15
    # Held at the lower band's edge value until the faster band passes it
    assert model.estimate_minutes(WEDNESDAY, 8 * 60, 14.0, 52.0, 5.0, 52.1, 5.1) == 15
    estimates = [
        model.estimate_minutes(WEDNESDAY, 8 * 60, step / 4, 52.0, 5.0, 52.1, 5.1)
        for step in range(0, 80)
    ]
    assert estimates == sorted(estimates)


def _learned(db, status, total, avg, last_sample=None):
    stat = LearnedTravelStats(
        region_id=99,
        day_type=DayType.weekday,
        bucket_start_hour=8,
        bucket_end_hour=9,
        distance_band_km_min=5.0,
        distance_band_km_max=15.0,
        sample_count=total,
        total_sample_count=total,
        suspicious_sample_count=0,
        avg_minutes_per_km=avg,
        last_sample_at_utc=last_sample or utc_now(),
        status=status,
    )
    db.add(stat)
    db.commit()
    return stat


def test_learned_stat_used_only_when_trusted(db, global_region):
    stat = _learned(db, LearnedTravelStatStatus.draft, 40, 1.5)
    assert TravelTimeModel(db).estimate_minutes(WEDNESDAY, 480, 10.0, 52.0, 5.0, 52.1, 5.1) == 12

    stat.status = LearnedTravelStatStatus.approved
    db.commit()
    assert TravelTimeModel(db).estimate_minutes(WEDNESDAY, 480, 10.0, 52.0, 5.0, 52.1, 5.1) == 15

    stat.last_sample_at_utc = utc_now() - datetime.timedelta(days=90)
    db.commit()
    assert TravelTimeModel(db).estimate_minutes(WEDNESDAY, 480, 10.0, 52.0, 5.0, 52.1, 5.1) == 12


def test_learned_stat_below_sample_threshold_ignored(db, global_region):
    _learned(db, LearnedTravelStatStatus.approved, 10, 1.5)
    assert TravelTimeModel(db).estimate_minutes(WEDNESDAY, 480, 10.0, 52.0, 5.0, 52.1, 5.1) == 12


def test_record_sample_merges_running_aggregates(db, global_region, make_driver):
    driver_a = make_driver(name="A")
    driver_b = make_driver(name="B")
    model = TravelTimeModel(db)

    model.record_sample(WEDNESDAY, 480, 10.0, 10.0, driver_a.id, 52.0, 5.0, 52.1, 5.1, stop_service_minutes=20)
    stat = model.record_sample(WEDNESDAY, 500, 10.0, 20.0, driver_a.id, 52.0, 5.0, 52.1, 5.1)
    stat = model.record_sample(WEDNESDAY, 510, 10.0, 15.0, driver_b.id, 52.0, 5.0, 52.1, 5.1, stop_service_minutes=30)

    assert stat.total_sample_count == 3
    assert stat.avg_minutes_per_km == pytest.approx(1.5)
    assert stat.min_minutes_per_km == pytest.approx(1.0)
    assert stat.max_minutes_per_km == pytest.approx(2.0)
    assert stat.suspicious_sample_count == 0
    assert stat.status == LearnedTravelStatStatus.draft
    assert stat.last_sample_at_utc is not None
    assert {c.driver_id: c.sample_count for c in stat.contributors} == {driver_a.id: 2, driver_b.id: 1}
    assert db.query(LearnedTravelStats).count() == 1


def test_record_sample_counts_suspicious_legs(db, global_region, make_driver):
    driver = make_driver()
    stat = TravelTimeModel(db).record_sample(WEDNESDAY, 480, 2.0, 120.0, driver.id, 52.0, 5.0, 52.01, 5.01)
    assert stat.suspicious_sample_count == 1
    assert stat.distance_band_km_min == 0.0


def test_record_sample_quarantines_implausible_stat(db, global_region, make_driver):
    driver = make_driver()
    config = Settings(TRAVEL_TIME_LEARNED_SAMPLE_THRESHOLD=2)
    model = TravelTimeModel(db, config)

    stat = model.record_sample(WEDNESDAY, 480, 10.0, 50.0, driver.id, 52.0, 5.0, 52.1, 5.1)
    # A single sample is only low_sample
    assert stat.status == LearnedTravelStatStatus.draft

    stat = model.record_sample(WEDNESDAY, 480, 10.0, 50.0, driver.id, 52.0, 5.0, 52.1, 5.1)
    assert stat.status == LearnedTravelStatStatus.quarantined


def test_record_sample_without_region_raises(db, make_driver):
    driver = make_driver()
    with pytest.raises(ValueError):
        TravelTimeModel(db).record_sample(WEDNESDAY, 480, 10.0, 12.0, driver.id, 52.0, 5.0, 52.1, 5.1)


def _race_merges(monkeypatch, model, other_session, driver_id, races):
    """Let another session merge into the same row right after `model` has read it."""
    merge = model._merge_sample
    attempts = []

    def merge_after_concurrent_write(*args, **kwargs):
        attempts.append(1)
        if len(attempts) <= races:
            TravelTimeModel(other_session).record_sample(
                WEDNESDAY, 480, 10.0, 20.0, driver_id, 52.0, 5.0, 52.1, 5.1
            )
        merge(*args, **kwargs)

    monkeypatch.setattr(model, "_merge_sample", merge_after_concurrent_write)
    return attempts


def test_record_sample_retries_after_concurrent_merge(monkeypatch, db, engine, global_region, make_driver):
    driver_a = make_driver(name="A")
    driver_b = make_driver(name="B")
    model = TravelTimeModel(db)
    model.record_sample(WEDNESDAY, 480, 10.0, 10.0, driver_a.id, 52.0, 5.0, 52.1, 5.1)

    other = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        attempts = _race_merges(monkeypatch, model, other, driver_b.id, races=1)
        stat = model.record_sample(WEDNESDAY, 480, 10.0, 15.0, driver_a.id, 52.0, 5.0, 52.1, 5.1)
    finally:
        other.close()

    assert len(attempts) == 2
    # Neither the concurrent sample nor this one is lost
    assert stat.total_sample_count == 3
    assert stat.avg_minutes_per_km == pytest.approx(1.5)
    assert {c.driver_id: c.sample_count for c in stat.contributors} == {driver_a.id: 2, driver_b.id: 1}


def test_record_sample_gives_up_after_repeated_conflicts(monkeypatch, db, engine, global_region, make_driver):
    driver_a = make_driver(name="A")
    driver_b = make_driver(name="B")
    model = TravelTimeModel(db)
    model.record_sample(WEDNESDAY, 480, 10.0, 10.0, driver_a.id, 52.0, 5.0, 52.1, 5.1)

    other = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        attempts = _race_merges(monkeypatch, model, other, driver_b.id, races=MAX_MERGE_ATTEMPTS)
        with pytest.raises(StaleDataError):
            model.record_sample(WEDNESDAY, 480, 10.0, 15.0, driver_a.id, 52.0, 5.0, 52.1, 5.1)
    finally:
        other.close()

    assert len(attempts) == MAX_MERGE_ATTEMPTS
    db.expire_all()
    assert db.query(LearnedTravelStats).one().total_sample_count == 1 + MAX_MERGE_ATTEMPTS


def test_assess_quality_flags():
    config = Settings()
    stat = SimpleNamespace(
        avg_minutes_per_km=3.5,
        total_sample_count=10,
        suspicious_sample_count=5,
        last_sample_at_utc=utc_now() - datetime.timedelta(days=100),
    )
    quality = assess_quality(stat, 1.2, config)

    assert quality.is_low_sample
    assert quality.is_stale
    assert quality.is_out_of_range
    assert quality.is_high_deviation
    assert quality.suspicious_ratio == pytest.approx(0.5)
    assert quality.flags == ["low_sample", "stale", "out_of_range", "high_deviation", "suspicious_ratio"]
    assert quality.blocks_approval
    assert should_quarantine(quality)


def test_assess_quality_clean_stat():
    stat = SimpleNamespace(
        avg_minutes_per_km=1.3,
        total_sample_count=50,
        suspicious_sample_count=1,
        last_sample_at_utc=utc_now(),
    )
    quality = assess_quality(stat, 1.2, Settings())
    assert quality.flags == []
    assert not quality.blocks_approval
    assert not should_quarantine(quality)
