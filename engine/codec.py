"""Query-string codec for list-view filter state.

Pure functions over a :class:`QuerySchema`; nothing here performs I/O.
Decoding is deliberately forgiving because it consumes URLs that operators
edit and share by hand: any value that does not fit its field silently falls
back to the field's default.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, unquote, urlencode

from loguru import logger

from models.query import FieldSpec, FieldType, QuerySchema
from utils.helpers import clamp

_TRUE_STRINGS = {"true", "1"}
_FALSE_STRINGS = {"false", "0"}

QueryPairs = List[Tuple[str, str]]


class QueryStateCodec:
    """Encode / decode a FilterState for one list view."""

    def __init__(self, schema: QuerySchema) -> None:
        self._schema = schema

    @property
    def schema(self) -> QuerySchema:
        return self._schema

    # ── Encoding ──────────────────────────────────────────────────────────────

    def encode(self, state: Dict[str, Any]) -> str:
        """Serialise *state* to a query string without the leading ``?``.

        Fields holding their default are omitted, so a state equal to the
        defaults encodes to ``""``.
        """
        return urlencode(self._pairs(state, always=()), quote_via=quote)

    def request_params(self, state: Dict[str, Any]) -> QueryPairs:
        """Parameters for the list endpoint: the URL encoding plus explicit paging."""
        always = tuple(
            name
            for name in (self._schema.page_field, self._schema.page_size_field)
            if name is not None
        )
        return self._pairs(state, always=always)

    def _pairs(self, state: Dict[str, Any], always: Tuple[str, ...]) -> QueryPairs:
        pairs: QueryPairs = []
        for spec in self._schema.specs:
            value = state.get(spec.name, spec.default)
            if spec.is_default(value) and spec.name not in always:
                continue
            if spec.type is FieldType.LIST and spec.repeat:
                pairs.extend((spec.key, str(item)) for item in value or ())
                continue
            text = self._format(spec, value)
            if text is not None:
                pairs.append((spec.key, text))
        return pairs

    @staticmethod
    def _format(spec: FieldSpec, value: Any) -> Optional[str]:
        if value is None:
            return None
        if spec.type is FieldType.LIST:
            return spec.delimiter.join(quote(str(item), safe="") for item in value)
        if spec.type is FieldType.BOOLEAN:
            return "true" if value else "false"
        if spec.type is FieldType.INTEGER:
            return str(int(value))
        if spec.type is FieldType.NUMBER:
            number = float(value)
            return str(int(number)) if number.is_integer() else repr(number)
        return str(value)

    # ── Decoding ──────────────────────────────────────────────────────────────

    def decode(self, query: Optional[str]) -> Dict[str, Any]:
        """Parse *query* into a complete FilterState. Never raises."""
        grouped = self._group(query)
        state: Dict[str, Any] = {}
        for spec in self._schema.specs:
            raws = grouped.get(spec.key)
            if raws is None:
                raws = next((grouped[alias] for alias in spec.aliases if alias in grouped), None)
            if raws is None:
                state[spec.name] = spec.default_value()
                continue
            try:
                state[spec.name] = self._parse(spec, raws)
            except (TypeError, ValueError) as exc:
                logger.debug(f"Ignoring query value for '{spec.key}' in view '{self._schema.name}': {exc}")
                state[spec.name] = spec.default_value()
        return state

    @staticmethod
    def _group(query: Optional[str]) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = OrderedDict()
        if not query:
            return grouped
        text = query.split("#", 1)[0]
        if text.startswith("?"):
            text = text[1:]
        try:
            pairs = parse_qsl(text, keep_blank_values=True)
        except ValueError as exc:
            logger.debug(f"Unparseable query string {query!r}: {exc}")
            return grouped
        for key, value in pairs:
            grouped.setdefault(key, []).append(value)
        return grouped

    @staticmethod
    def _parse(spec: FieldSpec, raws: List[str]) -> Any:
        if spec.type is FieldType.LIST:
            if spec.repeat:
                return [raw for raw in raws if raw]
            items: List[str] = []
            for raw in raws:
                if raw == "":
                    continue
                for part in raw.split(spec.delimiter):
                    item = unquote(part)
                    if item:
                        items.append(item)
            return items

        raw = raws[0]

        if spec.type is FieldType.STRING:
            return raw

        if spec.type is FieldType.ENUM:
            if raw not in spec.choices:
                raise ValueError(f"{raw!r} is not one of {spec.choices}")
            return raw

        if spec.type is FieldType.BOOLEAN:
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ValueError(f"{raw!r} is not a boolean")

        text = raw.strip()
        if not text and spec.nullable:
            return None
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"{raw!r} is not a finite number")
        lower = spec.minimum if spec.minimum is not None else -math.inf
        upper = spec.maximum if spec.maximum is not None else math.inf
        number = clamp(number, lower, upper)
        if spec.type is FieldType.INTEGER:
            if not number.is_integer():
                raise ValueError(f"{raw!r} is not a whole number")
            return int(number)
        return number
