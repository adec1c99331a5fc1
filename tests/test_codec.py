import pytest

from engine.codec import QueryStateCodec
from engine.views import DISCOVERY, PRODUCTS
from models.query import FieldSpec, FieldType, QuerySchema


@pytest.fixture
def products():
    return QueryStateCodec(PRODUCTS.query)


@pytest.fixture
def discovery():
    return QueryStateCodec(DISCOVERY.query)


def _state(codec, **changes):
    state = codec.schema.defaults()
    state.update(changes)
    return state


def test_defaults_encode_to_empty_query(products):
    assert products.encode(products.schema.defaults()) == ""


def test_search_on_first_page_encodes_only_the_search(products):
    assert products.encode(_state(products, q="lamp", page=1)) == "q=lamp"


def test_encoding_follows_schema_order(products):
    state = _state(products, sort="title_asc", page=2, q="x")
    assert products.encode(state) == "q=x&sort=title_asc&page=2"


def test_round_trip_preserves_a_full_state(products):
    state = _state(
        products,
        q="red lamp",
        sort="title_asc",
        categories=["l1:Home & Garden", "l2:Lamps|Shades"],
        brand=["Acme", "B&Q"],
        vendor=["North"],
        updated_from="2024-01-01",
        has_variants=True,
        saved="unsaved",
        wishlist_id="w-7",
        page=3,
        page_size=50,
    )
    assert products.decode(products.encode(state)) == state


def test_repeated_list_fields_are_written_as_separate_parameters(products):
    query = products.encode(_state(products, brand=["Acme", "B&Q"]))
    assert query == "brand=Acme&brand=B%26Q"
    assert products.decode(query)["brand"] == ["Acme", "B&Q"]


def test_list_items_are_escaped_individually(products):
    query = products.encode(_state(products, categories=["l1:a|b", "l2:c"]))
    assert products.decode(query)["categories"] == ["l1:a|b", "l2:c"]


def test_decode_accepts_leading_question_mark(products):
    assert products.decode("?q=lamp")["q"] == "lamp"


@pytest.mark.parametrize("query", [None, "", "?", "#fragment"])
def test_empty_queries_decode_to_defaults(products, query):
    assert products.decode(query) == products.schema.defaults()


def test_malformed_values_fall_back_to_defaults(products):
    state = products.decode("page=abc&sort=bogus&hasVariants=maybe&pageSize=")
    assert state["page"] == 1
    assert state["sort"] == "updated_desc"
    assert state["has_variants"] is False
    assert state["page_size"] == 25


def test_out_of_range_numbers_are_clamped(products):
    assert products.decode("page=0")["page"] == 1
    assert products.decode("page=-4")["page"] == 1
    assert products.decode("pageSize=500")["page_size"] == 200
    assert products.decode("pageSize=0")["page_size"] == 1


def test_fractional_page_falls_back_to_default(products):
    assert products.decode("page=2.5")["page"] == 1


def test_unknown_parameters_are_ignored(products):
    assert products.decode("utm_source=mail&q=lamp") == _state(products, q="lamp")


def test_request_params_always_carry_paging(products):
    assert products.request_params(products.schema.defaults()) == [("page", "1"), ("pageSize", "25")]


def test_request_params_include_filters(discovery):
    params = discovery.request_params(_state(discovery, q="lamp", sort="trending"))
    assert params == [("q", "lamp"), ("sort", "trending"), ("page", "1"), ("pageSize", "100")]


def test_nullable_numbers(discovery):
    assert discovery.decode("priceMin=12.5")["price_min"] == 12.5
    assert discovery.decode("priceMin=")["price_min"] is None
    assert discovery.decode("priceMin=cheap")["price_min"] is None
    assert discovery.encode(_state(discovery, price_min=10.0)) == "priceMin=10"


def test_comma_delimited_providers(discovery):
    state = _state(discovery, provider=["cdon", "fyndiq"])
    assert discovery.decode(discovery.encode(state))["provider"] == ["cdon", "fyndiq"]
    assert discovery.decode("provider=cdon")["provider"] == ["cdon"]


def test_legacy_alias_is_read_but_not_written():
    schema = QuerySchema(
        name="legacy",
        specs=[
            FieldSpec(name="categories", type=FieldType.LIST, default=[], aliases=["category"]),
        ],
        page_field=None,
        page_size_field=None,
    )
    codec = QueryStateCodec(schema)
    assert codec.decode("category=lamps")["categories"] == ["lamps"]
    assert codec.decode("categories=shades&category=lamps")["categories"] == ["shades"]
    assert codec.encode({"categories": ["lamps"]}) == "categories=lamps"
