import asyncio

from engine.errors import ServerError
from engine.fetch_controller import PaginatedFetchController
from models.fetch import FetchResult


class _Producer:
    """Hands out one unresolved future per request so tests decide the arrival order."""

    def __init__(self) -> None:
        self.calls = []

    async def __call__(self, state, token):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((state, token, future))
        return await future

    def resolve(self, index, items, total=None, page=1, page_size=25):
        _, _, future = self.calls[index]
        future.set_result(
            FetchResult(items=items, total=len(items) if total is None else total, page=page, page_size=page_size)
        )

    def fail(self, index, exc):
        self.calls[index][2].set_exception(exc)


def _rows(*names):
    return [{"id": name} for name in names]


def test_first_request_applies_result():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        seen = []
        controller.subscribe(seen.append)
        request = controller.set_state({"q": "lamp", "page": 1})
        await asyncio.sleep(0)
        loading = controller.snapshot.is_loading
        producer.resolve(0, _rows("a", "b"), total=47)
        snapshot = await controller.wait()
        return request, loading, snapshot, controller, seen

    request, loading, snapshot, controller, seen = asyncio.run(scenario())
    assert request.seq == 1
    assert loading is True
    assert [row["id"] for row in snapshot.items] == ["a", "b"]
    assert snapshot.total == 47
    assert snapshot.page_count == 2
    assert snapshot.is_loading is False
    assert controller.applied_seq == 1
    assert seen[0].is_loading is True
    assert seen[-1].items == snapshot.items


def test_equal_state_does_not_issue_a_request():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        controller.set_state({"q": "lamp", "tags": ["a"]})
        again = controller.set_state({"q": "lamp", "tags": ["a"]})
        await asyncio.sleep(0)
        controller.close()
        return again, producer, controller

    again, producer, controller = asyncio.run(scenario())
    assert again is None
    assert len(producer.calls) == 1
    assert controller.seq == 1


def test_superseded_request_is_cancelled_and_never_applied():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        seen = []
        controller.subscribe(seen.append)
        controller.set_state({"q": "lam"})
        await asyncio.sleep(0)
        controller.set_state({"q": "lamp"})
        await asyncio.sleep(0)
        producer.resolve(1, _rows("lamp-1"))
        snapshot = await controller.wait()
        return producer, controller, snapshot, seen

    producer, controller, snapshot, seen = asyncio.run(scenario())
    first_token = producer.calls[0][1]
    assert first_token.cancelled
    assert producer.calls[0][2].cancelled()
    assert [row["id"] for row in snapshot.items] == ["lamp-1"]
    assert controller.seq == 2
    assert controller.applied_seq == 2
    assert all(s.error is None for s in seen)


def test_failure_keeps_last_good_page_and_next_success_clears_error():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        controller.set_state({"page": 1})
        await asyncio.sleep(0)
        producer.resolve(0, _rows("a"))
        await controller.wait()

        controller.set_state({"page": 2})
        await asyncio.sleep(0)
        producer.fail(1, ServerError(500, "database unavailable"))
        failed = await controller.wait()

        controller.set_state({"page": 3})
        await asyncio.sleep(0)
        producer.resolve(2, _rows("c"), page=3)
        recovered = await controller.wait()
        return failed, recovered

    failed, recovered = asyncio.run(scenario())
    assert failed.error == "database unavailable"
    assert [row["id"] for row in failed.items] == ["a"]
    assert failed.is_loading is False
    assert recovered.error is None
    assert [row["id"] for row in recovered.items] == ["c"]
    assert recovered.page == 3


def test_refresh_reissues_current_state():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        controller.set_state({"q": "lamp"})
        await asyncio.sleep(0)
        producer.resolve(0, _rows("a"))
        await controller.wait()
        request = controller.refresh()
        await asyncio.sleep(0)
        producer.resolve(1, _rows("a", "b"))
        snapshot = await controller.wait()
        return request, producer, snapshot

    request, producer, snapshot = asyncio.run(scenario())
    assert request.seq == 2
    assert producer.calls[1][0] == {"q": "lamp"}
    assert len(snapshot.items) == 2


def test_key_fields_limit_what_counts_as_a_change():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer, key_fields=("q", "page"))
        controller.set_state({"q": "lamp", "page": 1, "expanded": "row-1"})
        second = controller.set_state({"q": "lamp", "page": 1, "expanded": "row-2"})
        await asyncio.sleep(0)
        controller.close()
        return second, producer

    second, producer = asyncio.run(scenario())
    assert second is None
    assert len(producer.calls) == 1


def test_close_stops_updates():
    async def scenario():
        producer = _Producer()
        controller = PaginatedFetchController(producer)
        seen = []
        controller.subscribe(seen.append)
        controller.set_state({"q": "lamp"})
        await asyncio.sleep(0)
        controller.close()
        await asyncio.sleep(0)
        after = controller.set_state({"q": "desk"})
        return producer, seen, after

    producer, seen, after = asyncio.run(scenario())
    assert producer.calls[0][1].cancelled
    assert after is None
    assert len(seen) == 1


class _StubbornProducer(_Producer):
    """Ignores cancellation and returns whatever it is eventually given."""

    def __init__(self) -> None:
        super().__init__()
        self.returned = []

    async def __call__(self, state, token):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((state, token, future))
        while True:
            try:
                result = await asyncio.shield(future)
            except asyncio.CancelledError:
                continue
            self.returned.append(state)
            return result


def test_late_result_of_a_superseded_request_is_discarded():
    async def scenario():
        producer = _StubbornProducer()
        controller = PaginatedFetchController(producer)
        controller.set_state({"q": "lam"})
        await asyncio.sleep(0)
        controller.set_state({"q": "lamp"})
        await asyncio.sleep(0)
        producer.resolve(1, _rows("lamp-1"))
        applied = await controller.wait()
        seen = []
        controller.subscribe(seen.append)

        producer.resolve(0, _rows("lam-1", "lam-2"))
        while len(producer.returned) < 2:
            await asyncio.sleep(0)
        await asyncio.sleep(0)
        return applied, controller, seen, producer

    applied, controller, seen, producer = asyncio.run(scenario())
    assert producer.returned == [{"q": "lamp"}, {"q": "lam"}]
    assert producer.calls[0][1].cancelled
    assert [row["id"] for row in controller.snapshot.items] == ["lamp-1"]
    assert controller.snapshot == applied
    assert controller.applied_seq == 2
    assert controller.seq == 2
    assert seen == []
