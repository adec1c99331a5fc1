import asyncio

from engine.errors import JobTimeoutError, ServerError
from engine.job_poller import JobPoller
from models.job import JobState, JobStatus


class _Job:
    """Scripted job endpoints: each status call pops the next payload (the last one repeats)."""

    def __init__(self, *payloads, start_error=None) -> None:
        self.payloads = list(payloads)
        self.start_error = start_error
        self.starts = []
        self.status_calls = 0

    async def start(self, targets):
        self.starts.append(targets)
        if self.start_error is not None:
            raise self.start_error
        return None

    async def status(self):
        self.status_calls += 1
        payload = self.payloads.pop(0) if len(self.payloads) > 1 else self.payloads[0]
        if isinstance(payload, Exception):
            raise payload
        return JobStatus.model_validate(payload)


def _poller(job, **kwargs):
    kwargs.setdefault("interval", 0.01)
    kwargs.setdefault("max_attempts", 10)
    kwargs.setdefault("done_message_ttl", 0)
    return JobPoller(job.start, job.status, **kwargs)


RUNNING = {"status": "running", "message": "Generating SKUs...", "missingCount": 3, "totalCount": 5}
DONE = {"status": "done", "message": "Generated 3 SKUs.", "missingCount": 0, "totalCount": 5}


def test_runs_until_done_and_notifies_once():
    async def scenario():
        job = _Job(RUNNING, RUNNING, DONE)
        poller = _poller(job)
        done = []
        poller.on_done(done.append)
        started = await poller.start(["SPU-1"])
        started_state = started.state
        status = await poller.wait()
        return job, started_state, status, done

    job, started_state, status, done = asyncio.run(scenario())
    assert job.starts == [["SPU-1"]]
    assert started_state is JobState.RUNNING
    assert status.state is JobState.DONE
    assert status.attempts == 3
    assert status.ready
    assert status.message == "Generated 3 SKUs."
    assert len(done) == 1


def test_start_while_running_is_ignored():
    async def scenario():
        job = _Job(RUNNING, DONE)
        poller = _poller(job)
        await poller.start()
        await poller.start(["SPU-2"])
        await poller.wait()
        return job

    job = asyncio.run(scenario())
    assert job.starts == [None]


def test_gives_up_after_exactly_max_attempts():
    async def scenario():
        job = _Job(RUNNING)
        poller = _poller(job, max_attempts=3)
        done = []
        poller.on_done(done.append)
        await poller.start()
        status = await poller.wait()
        return job, poller, status, done

    job, poller, status, done = asyncio.run(scenario())
    assert job.status_calls == 3
    assert status.state is JobState.ERROR
    assert status.attempts == 3
    assert isinstance(poller.error, JobTimeoutError)
    assert isinstance(poller.error, TimeoutError)
    assert done == []


def test_status_failure_moves_to_error():
    async def scenario():
        job = _Job(RUNNING, ServerError(500, "Unable to read SKU status."))
        poller = _poller(job)
        await poller.start()
        return await poller.wait()

    status = asyncio.run(scenario())
    assert status.state is JobState.ERROR
    assert status.message == "Unable to read SKU status."


def test_server_reported_error_stops_polling():
    async def scenario():
        job = _Job({"status": "error", "message": "Generator crashed"}, RUNNING)
        poller = _poller(job)
        await poller.start()
        status = await poller.wait()
        return job, status

    job, status = asyncio.run(scenario())
    assert job.status_calls == 1
    assert status.state is JobState.ERROR
    assert status.message == "Generator crashed"


def test_start_failure_moves_to_error_and_allows_restart():
    async def scenario():
        job = _Job(DONE, start_error=ServerError(409, "Another job is running"))
        poller = _poller(job)
        failed = await poller.start()
        failed_state, failed_message = failed.state, failed.message
        job.start_error = None
        await poller.start()
        status = await poller.wait()
        return failed_state, failed_message, status

    failed_state, failed_message, status = asyncio.run(scenario())
    assert failed_state is JobState.ERROR
    assert failed_message == "Another job is running"
    assert status.state is JobState.DONE


def test_nothing_to_generate_clears_the_message():
    async def scenario():
        job = _Job({"status": "done", "message": "No drafts", "missingCount": 0, "totalCount": 0})
        poller = _poller(job)
        await poller.start()
        return await poller.wait()

    status = asyncio.run(scenario())
    assert status.state is JobState.DONE
    assert status.message is None
    assert not status.ready


def test_done_message_expires():
    async def scenario():
        job = _Job(DONE)
        poller = _poller(job, done_message_ttl=0.05)
        await poller.start()
        status = await poller.wait()
        shown = status.message
        await asyncio.sleep(0.15)
        return shown, poller.status

    shown, later = asyncio.run(scenario())
    assert shown == "Generated 3 SKUs."
    assert later.state is JobState.DONE
    assert later.message is None


def test_sync_resumes_a_job_started_elsewhere():
    async def scenario():
        job = _Job(RUNNING, RUNNING, DONE)
        poller = _poller(job)
        done = []
        poller.on_done(done.append)
        synced = await poller.sync()
        synced_state = synced.state
        status = await poller.wait()
        return job, synced_state, status, done

    job, synced_state, status, done = asyncio.run(scenario())
    assert job.starts == []
    assert synced_state is JobState.RUNNING
    assert status.state is JobState.DONE
    assert len(done) == 1


def test_sync_of_an_idle_job_does_not_poll():
    async def scenario():
        job = _Job({"status": None})
        poller = _poller(job)
        status = await poller.sync()
        await poller.wait()
        return job, status

    job, status = asyncio.run(scenario())
    assert status.state is JobState.IDLE
    assert job.status_calls == 1


def test_close_stops_polling():
    async def scenario():
        job = _Job(RUNNING)
        poller = _poller(job, interval=0.05)
        await poller.start()
        poller.close()
        await asyncio.sleep(0.15)
        return job

    job = asyncio.run(scenario())
    assert job.status_calls == 0
