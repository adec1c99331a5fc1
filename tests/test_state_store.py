import pytest

from engine.errors import ValidationError
from engine.state_store import QueryStateStore, StateOrigin, SyncPhase
from engine.views import PRODUCTS
from storage.location import NavigationHistory


@pytest.fixture
def location():
    return NavigationHistory("/app/products")


@pytest.fixture
def store(location):
    store = QueryStateStore(PRODUCTS.query, location)
    yield store
    store.close()


def _record(store):
    events = []
    store.subscribe(lambda state, origin: events.append((state, origin)))
    return events


def test_mount_restores_state_without_pushing():
    location = NavigationHistory("/app/products", "q=lamp&page=3&sort=title_asc")
    store = QueryStateStore(PRODUCTS.query, location)
    events = _record(store)

    state = store.mount()

    assert state["q"] == "lamp"
    assert state["page"] == 3
    assert state["sort"] == "title_asc"
    assert len(location) == 1
    assert events[-1][1] is StateOrigin.RESTORE
    assert store.phase is SyncPhase.IDLE


def test_update_pushes_url_and_resets_page(store, location):
    store.mount()
    store.update(page=4)
    synced = []
    store.on_synced(synced.append)

    assert store.update(q="lamp") is True

    assert store.get("page") == 1
    assert location.query == "q=lamp"
    assert location.href == "/app/products?q=lamp"
    assert synced == ["q=lamp"]
    assert len(location) == 3


def test_explicit_page_in_same_update_is_kept(store, location):
    store.mount()
    store.update(q="lamp", page=4)
    assert store.get("page") == 4
    assert location.query == "q=lamp&page=4"


def test_set_page_does_not_reset(store, location):
    store.mount()
    store.update(q="lamp")
    store.set_page(2)
    assert location.query == "q=lamp&page=2"


def test_unchanged_update_is_a_no_op(store, location):
    store.mount()
    store.update(q="lamp")
    events = _record(store)

    assert store.update(q="lamp") is False
    assert events == []
    assert len(location) == 2


def test_invalid_values_are_rejected_before_anything_changes(store, location):
    store.mount()
    store.update(q="lamp")
    before = store.state

    with pytest.raises(ValidationError) as excinfo:
        store.update(q="desk", sort="cheapest")
    assert excinfo.value.field == "sort"

    with pytest.raises(ValidationError):
        store.update(colour="red")
    with pytest.raises(ValidationError):
        store.update(page=0)
    with pytest.raises(ValidationError):
        store.update(page_size=500)

    assert store.state == before
    assert location.query == "q=lamp"


def test_back_restores_previous_state_without_new_entries(store, location):
    store.mount()
    store.update(q="lamp")
    store.update(q="desk")
    events = _record(store)

    assert location.back() is True

    assert store.get("q") == "lamp"
    assert events[-1][1] is StateOrigin.RESTORE
    assert len(location) == 3
    assert location.query == "q=lamp"
    assert store.phase is SyncPhase.IDLE


def test_update_after_back_drops_forward_history(store, location):
    store.mount()
    store.update(q="lamp")
    store.update(q="desk")
    location.back()

    store.update(q="chair")

    assert location.entries == ["", "q=lamp", "q=chair"]


def test_restore_that_changes_nothing_does_not_block_the_next_sync(store, location):
    store.mount()
    location.navigate("")
    store.update(q="lamp")
    assert location.query == "q=lamp"


def test_malformed_link_restores_defaults_and_keeps_the_url(store, location):
    store.mount()
    store.update(q="lamp")

    location.navigate("page=abc&sort=nope")

    assert store.state == PRODUCTS.query.defaults()
    assert location.query == "page=abc&sort=nope"


def test_reset_returns_to_defaults(store, location):
    store.mount()
    store.update(q="lamp", brand=["Acme"])
    assert store.reset() is True
    assert store.state == PRODUCTS.query.defaults()
    assert location.query == ""
    assert store.reset() is False


def test_navigation_is_ignored_after_close(location):
    store = QueryStateStore(PRODUCTS.query, location)
    store.mount()
    store.close()
    location.navigate("q=lamp")
    assert store.get("q") == ""
