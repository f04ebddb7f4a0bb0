"""
Tests for cache key derivation and per-collection TTL policies.
"""
import pytest

from community_hub.cache import (
    get_ttl_for_collection,
    item_prefix,
    key_for,
    list_prefix,
    matches_prefix,
    serialize_filter,
)
from config.settings import settings


class TestKeyFor:

    def test_entity_key(self):
        assert key_for("marketplace_listings", "42") == "marketplace_listings:item:42"
        assert key_for("marketplace_listings", 42) == "marketplace_listings:item:42"

    def test_unfiltered_list_key(self):
        assert key_for("posts") == "posts:list:all"
        assert key_for("posts", {}) == "posts:list:all"

    def test_filter_order_does_not_matter(self):
        a = key_for("marketplace_listings", {"category": "electronics", "condition": "new"})
        b = key_for("marketplace_listings", {"condition": "new", "category": "electronics"})
        assert a == b == "marketplace_listings:list:category=electronics&condition=new"

    def test_none_valued_filters_are_dropped(self):
        assert key_for("jobs", {"type": "full_time", "remote": None}) == key_for("jobs", {"type": "full_time"})
        assert key_for("jobs", {"remote": None}) == "jobs:list:all"

    def test_number_and_string_filters_differ(self):
        assert key_for("jobs", {"page": 1}) != key_for("jobs", {"page": "1"})

    def test_tilde_string_does_not_collide_with_tagged_value(self):
        assert key_for("jobs", {"page": "~1"}) != key_for("jobs", {"page": 1})

    def test_separators_in_values_are_quoted(self):
        key = key_for("events", {"city": "a:b&c=d"})
        assert key == "events:list:city=a%3Ab%26c%3Dd"
        assert key_for("events", "x:y") == "events:item:x%3Ay"

    def test_nested_values_serialize_stably(self):
        assert serialize_filter({"tags": {"b": 1, "a": 2}}) == serialize_filter({"tags": {"a": 2, "b": 1}})

    def test_bool_entity_id_rejected(self):
        with pytest.raises(TypeError):
            key_for("posts", True)

    def test_unsupported_selector_rejected(self):
        with pytest.raises(TypeError):
            key_for("posts", 1.5)


class TestPrefixes:

    def test_list_prefix_covers_list_keys_only(self):
        prefix = list_prefix("marketplace_listings")
        assert matches_prefix(key_for("marketplace_listings"), prefix)
        assert matches_prefix(key_for("marketplace_listings", {"category": "books"}), prefix)
        assert not matches_prefix(key_for("marketplace_listings", "1"), prefix)

    def test_item_prefix_covers_entity_keys_only(self):
        prefix = item_prefix("posts")
        assert matches_prefix(key_for("posts", "9"), prefix)
        assert not matches_prefix(key_for("posts"), prefix)

    def test_prefix_of_one_collection_does_not_reach_another(self):
        assert not matches_prefix(key_for("jobs_2"), list_prefix("jobs"))


class TestTTLPolicies:

    def test_messages_short_ttl_without_background_refresh(self):
        ttl, window, allow_swr = get_ttl_for_collection("messages")
        assert ttl == 120
        assert allow_swr is False
        assert window == settings.cache_refresh_window

    def test_posts_refresh_earlier(self):
        assert get_ttl_for_collection("posts") == (300, 0.3, True)

    def test_user_status(self):
        assert get_ttl_for_collection("user_status")[0] == 600

    def test_unknown_collection_uses_defaults(self):
        assert get_ttl_for_collection("unknown") == (
            settings.cache_default_ttl_seconds,
            settings.cache_refresh_window,
            True,
        )

    def test_overrides_win(self):
        ttl, _, allow_swr = get_ttl_for_collection("marketplace_listings", {"ttl": 5, "allow_swr": False})
        assert ttl == 5
        assert allow_swr is False
