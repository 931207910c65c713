import pytest

from brief_scheduler.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy", manage_resources=False)

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing", manage_resources=False)


def test_registry_exposes_scheduler_jobs():
    assert set(worker.JOB_REGISTRY) == {"daily_brief_scheduler", "daily_brief_sweep_once"}


@pytest.mark.asyncio
async def test_run_worker_initializes_and_closes_resources(monkeypatch):
    events = []

    async def fake_initialize():
        events.append("init")
        return ["database_pool"]

    async def fake_close(started):
        events.append(("close", tuple(started)))

    async def failing_job():
        events.append("job")
        raise RuntimeError("boom")

    monkeypatch.setattr(worker, "_initialize_resources", fake_initialize)
    monkeypatch.setattr(worker, "_close_resources", fake_close)
    monkeypatch.setitem(worker.JOB_REGISTRY, "failing", failing_job)

    with pytest.raises(RuntimeError):
        await worker.run_worker("failing")

    assert events == ["init", "job", ("close", ("database_pool",))]


@pytest.mark.asyncio
async def test_sweep_once_job_runs_single_sweep(monkeypatch):
    calls = []

    async def fake_sweep():
        calls.append(1)
        return {"job_run": "daily_brief_sweep", "queued": 0}

    monkeypatch.setattr(worker, "run_daily_brief_sweep", fake_sweep)

    await worker.run_daily_brief_sweep_once()

    assert calls == [1]
