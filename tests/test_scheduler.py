import threading

import pytest

from services.scheduler import Scheduler, build_scheduler


def test_build_scheduler_registers_sweeps(app):
    scheduler = build_scheduler(app)
    assert set(scheduler.jobs) == {"expiry-reaper", "booking-reminders"}
    assert scheduler.jobs["expiry-reaper"].interval == app.config["REAPER_INTERVAL_SECONDS"]
    assert not scheduler.running


def test_duplicate_job_name_rejected(app):
    scheduler = Scheduler(app)
    scheduler.add_job("tick", lambda: 1, 10)
    with pytest.raises(ValueError):
        scheduler.add_job("tick", lambda: 2, 10)


def test_run_job_records_result_and_errors(app):
    scheduler = Scheduler(app)
    scheduler.add_job("ok", lambda: 3, 10)

    def boom():
        raise RuntimeError("sweep exploded")

    scheduler.add_job("broken", boom, 10)

    assert scheduler.run_job("ok") is True
    assert scheduler.jobs["ok"].last_result == 3
    assert scheduler.jobs["ok"].runs == 1

    # errors are recorded, never raised
    assert scheduler.run_job("broken") is True
    assert scheduler.jobs["broken"].last_error == "sweep exploded"


def test_busy_job_skips_overlapping_tick(app):
    scheduler = Scheduler(app)
    started, release = threading.Event(), threading.Event()

    def slow():
        started.set()
        release.wait(5)
        return "done"

    scheduler.add_job("slow", slow, 10)
    worker = threading.Thread(target=scheduler.run_job, args=("slow",))
    worker.start()
    assert started.wait(5)

    assert scheduler.run_job("slow") is False

    release.set()
    worker.join(5)
    assert scheduler.jobs["slow"].runs == 1
    assert scheduler.jobs["slow"].last_result == "done"


def test_start_and_stop(app):
    ticked = threading.Event()
    scheduler = Scheduler(app)
    scheduler.add_job("tick", ticked.set, 0.01)

    scheduler.start()
    try:
        assert scheduler.running
        assert ticked.wait(5)
    finally:
        scheduler.stop()
    assert not scheduler.running
