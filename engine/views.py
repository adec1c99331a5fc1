"""Declarative definitions of the console's list views and their row actions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from clients.catalog_client import CatalogClient
from engine.optimistic import OptimisticActionManager
from models.mutation import MutationIntent
from models.query import FieldSpec, FieldType, QuerySchema


class ViewDefinition(BaseModel):
    """Everything needed to open one list view against the data service."""

    name: str
    path: str = Field(..., description="Location path the view lives at")
    collection: str = Field(..., description="List endpoint, relative to the API base URL")
    query: QuerySchema
    key_fields: List[str] = Field(..., description="Row fields that identify a row")
    tracked_fields: List[str] = Field(
        default_factory=list,
        description="Row fields the server may return authoritatively after an action",
    )
    search_field: Optional[str] = Field(default="q")
    debounce_seconds: Optional[float] = Field(
        default=None,
        description="Search debounce; falls back to settings.search_debounce_seconds",
    )
    wishlists: Optional[str] = Field(default=None, description="Wishlist listing with item counts")
    wishlist_items: Optional[str] = Field(default=None, description="Wishlist membership endpoint")
    job: Optional[str] = Field(default=None, description="Background generation job path")
    job_target_key: str = Field(default="targets")


def _date(name: str, param: str) -> FieldSpec:
    return FieldSpec(name=name, param=param, default="")


def _paging(default_size: int) -> List[FieldSpec]:
    return [
        FieldSpec(name="page", type=FieldType.INTEGER, default=1, minimum=1, resets_page=False),
        FieldSpec(
            name="page_size",
            param="pageSize",
            type=FieldType.INTEGER,
            default=default_size,
            minimum=1,
            maximum=200,
        ),
    ]


PRODUCTS = ViewDefinition(
    name="products",
    path="/app/products",
    collection="products",
    query=QuerySchema(
        name="products",
        specs=[
            FieldSpec(name="q", default=""),
            FieldSpec(
                name="sort",
                type=FieldType.ENUM,
                default="updated_desc",
                choices=["updated_desc", "added_desc", "title_asc"],
            ),
            FieldSpec(name="categories", type=FieldType.LIST, default=[]),
            FieldSpec(name="brand", type=FieldType.LIST, default=[], repeat=True),
            FieldSpec(name="vendor", type=FieldType.LIST, default=[], repeat=True),
            _date("updated_from", "updatedFrom"),
            _date("updated_to", "updatedTo"),
            _date("added_from", "addedFrom"),
            _date("added_to", "addedTo"),
            FieldSpec(name="has_variants", param="hasVariants", type=FieldType.BOOLEAN, default=False),
            FieldSpec(
                name="saved",
                type=FieldType.ENUM,
                default="all",
                choices=["all", "saved", "unsaved"],
            ),
            FieldSpec(name="wishlist_id", param="wishlistId", default="all"),
            *_paging(25),
        ],
    ),
    key_fields=["id"],
    tracked_fields=["wishlist_names"],
    wishlists="products/wishlists",
    wishlist_items="products/wishlists/items",
)

DISCOVERY = ViewDefinition(
    name="discovery",
    path="/app/discovery",
    collection="discovery",
    query=QuerySchema(
        name="discovery",
        specs=[
            FieldSpec(name="q", default=""),
            FieldSpec(name="provider", type=FieldType.LIST, default=[], delimiter=","),
            FieldSpec(
                name="sort",
                type=FieldType.ENUM,
                default="sold_7d",
                choices=["sold_today", "sold_7d", "sold_all_time", "trending"],
            ),
            FieldSpec(name="wishlist_id", param="wishlistId", default="all"),
            _date("updated_from", "updatedFrom"),
            _date("added_from", "addedFrom"),
            FieldSpec(name="price_min", param="priceMin", type=FieldType.NUMBER, default=None, minimum=0),
            FieldSpec(name="price_max", param="priceMax", type=FieldType.NUMBER, default=None, minimum=0),
            FieldSpec(name="categories", type=FieldType.LIST, default=[]),
            *_paging(100),
        ],
    ),
    key_fields=["provider", "product_id"],
    tracked_fields=["liked", "removed", "in_production", "wishlist_names"],
    wishlists="discovery/wishlists/overview",
    wishlist_items="discovery/wishlists/items",
)

DRAFTS = ViewDefinition(
    name="drafts",
    path="/app/production/draft-explorer",
    collection="drafts/products",
    query=QuerySchema(
        name="drafts",
        specs=[FieldSpec(name="q", default="")],
        page_field=None,
        page_size_field=None,
    ),
    key_fields=["spu"],
    debounce_seconds=0.3,
    job="drafts/sku",
    job_target_key="spus",
)

VIEWS: Dict[str, ViewDefinition] = {view.name: view for view in (PRODUCTS, DISCOVERY, DRAFTS)}


def get_view(name: str) -> ViewDefinition:
    try:
        return VIEWS[name]
    except KeyError:
        raise KeyError(f"Unknown view '{name}'. Choose from: {', '.join(sorted(VIEWS))}") from None


# ── Row actions ───────────────────────────────────────────────────────────────


def _discovery_ref(target: str) -> Dict[str, str]:
    provider, _, product_id = target.partition(":")
    return {"provider": provider, "product_id": product_id}


def register_actions(
    view: ViewDefinition,
    client: CatalogClient,
    manager: OptimisticActionManager,
) -> None:
    """Bind the server calls behind each optimistic row action of *view*."""
    if view.name != DISCOVERY.name:
        return

    def _flag(action: str):
        async def _handler(intent: MutationIntent) -> Optional[Dict[str, Any]]:
            body = {**_discovery_ref(intent.target), "action": action, "value": bool(intent.next_value)}
            return await client.mutate("POST", "discovery/actions", body)

        return _handler

    async def _production(intent: MutationIntent) -> Optional[Dict[str, Any]]:
        ref = _discovery_ref(intent.target)
        if intent.next_value:
            await client.mutate("POST", "discovery/production", {"items": [ref]})
        else:
            await client.mutate("DELETE", "discovery/production", ref)
        return None

    async def _production_bulk(intents: List[MutationIntent]) -> None:
        items = [_discovery_ref(intent.target) for intent in intents]
        await client.mutate("POST", "discovery/production", {"items": items})

    manager.register("liked", _flag("like"))
    manager.register("removed", _flag("remove"))
    manager.register("in_production", _production)
    manager.register_bulk("in_production", _production_bulk)


def wishlist_item_ref(view: ViewDefinition, target: str) -> Dict[str, str]:
    """Body fragment that identifies a row for the wishlist endpoints."""
    if view.name == DISCOVERY.name:
        return _discovery_ref(target)
    return {"product_id": target}
