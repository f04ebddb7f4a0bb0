"""
Cache key derivation.

Keys are opaque outside this module. Feature code asks for the key of an
entity or of a filtered list query and never formats one by hand.

    key_for("marketplace_listings", "42")
        -> "marketplace_listings:item:42"
    key_for("marketplace_listings", {"category": "electronics", "condition": "new"})
        -> "marketplace_listings:list:category=electronics&condition=new"
"""
import json
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote

from .store import KEY_SEPARATOR

ITEM_SEGMENT = "item"
LIST_SEGMENT = "list"
ALL_FILTER = "all"

Selector = Union[str, int, Mapping[str, Any], None]


def _quote(value: str) -> str:
    # ":" and "&" must not survive, they delimit segments and pairs
    return quote(value, safe="")


def _encode_value(value: Any) -> str:
    # Non-string scalars are JSON-tagged with "~" so 1 and "1" stay distinct
    if isinstance(value, str):
        encoded = _quote(value)
        return "%7E" + encoded[1:] if encoded.startswith("~") else encoded
    return "~" + _quote(json.dumps(value, sort_keys=True, separators=(",", ":"), default=str))


def serialize_filter(filters: Optional[Mapping[str, Any]]) -> str:
    """
    Stable serialization of a filter object.

    Attribute order is normalized and None-valued attributes are dropped, so
    {"a": 1, "b": None} and {"a": 1} share a key.
    """
    if not filters:
        return ALL_FILTER
    pairs = sorted(
        (str(k), v) for k, v in filters.items() if v is not None
    )
    if not pairs:
        return ALL_FILTER
    return "&".join(f"{_quote(k)}={_encode_value(v)}" for k, v in pairs)


def key_for(namespace: str, selector: Selector = None) -> str:
    """
    Derive the cache key for an entity id or a list filter.

    Args:
        namespace: Collection name, e.g. "marketplace_listings"
        selector: Entity id (str/int), filter mapping, or None for the
            unfiltered list

    Returns:
        Opaque cache key
    """
    if selector is None or isinstance(selector, Mapping):
        return KEY_SEPARATOR.join((namespace, LIST_SEGMENT, serialize_filter(selector)))
    if isinstance(selector, bool):
        raise TypeError("entity ids must be str or int")
    if isinstance(selector, (str, int)):
        return KEY_SEPARATOR.join((namespace, ITEM_SEGMENT, _quote(str(selector))))
    raise TypeError(f"unsupported cache selector: {type(selector).__name__}")


def list_prefix(namespace: str) -> str:
    """Prefix covering every list query of a collection."""
    return KEY_SEPARATOR.join((namespace, LIST_SEGMENT))


def item_prefix(namespace: str) -> str:
    """Prefix covering every entity key of a collection."""
    return KEY_SEPARATOR.join((namespace, ITEM_SEGMENT))
