"""
Unit tests for cache key construction.
"""

from service_proxy.app.caching.keys import (
    build_key,
    constant_key,
    normalize_argument,
    split_path_arguments,
)
from service_proxy.app.persistence.models import CallKey


class TestArgumentNormalization:
    """Test cases for path argument normalization."""

    def test_boolean_tokens_become_booleans(self):
        assert normalize_argument("true") is True
        assert normalize_argument("false") is False

    def test_other_tokens_stay_strings(self):
        assert normalize_argument("True") == "True"
        assert normalize_argument("1") == "1"
        assert normalize_argument("") == ""

    def test_large_integers_keep_precision(self):
        raw = "115792089237316195423570985008687907853269984665640564039457584007913129639935"
        assert normalize_argument(raw) == raw


class TestBuildKey:
    """Test cases for build_key."""

    def test_key_and_arguments_are_deterministic(self):
        first = build_key("foo", ["true", "false", "bar"])
        second = build_key("foo", ["true", "false", "bar"])

        assert first == second
        key, args = first
        assert key == CallKey("foo", ("true", "false", "bar"))
        assert args == [True, False, "bar"]

    def test_string_form_joins_components(self):
        key, args = build_key("getLoan", ["true", "5"])

        assert str(key) == "getLoan:true:5"
        assert args == [True, "5"]

    def test_argument_order_matters(self):
        key_a, _ = build_key("getLoan", ["1", "2"])
        key_b, _ = build_key("getLoan", ["2", "1"])

        assert key_a != key_b

    def test_argument_count_matters(self):
        key_a, _ = build_key("getLoan", ["1"])
        key_b, _ = build_key("getLoan", ["1", "1"])

        assert key_a != key_b

    def test_empty_segments_are_dropped(self):
        key, args = build_key("getLoan", split_path_arguments("true//5/"))

        assert str(key) == "getLoan:true:5"
        assert args == [True, "5"]

    def test_separator_inside_argument_does_not_collide(self):
        joined, _ = build_key("f", ["a:b"])
        split, _ = build_key("f", ["a", "b"])

        assert str(joined) == str(split)
        assert joined != split

    def test_constant_key_is_bare_name(self):
        key = constant_key("totalSupply")

        assert key == CallKey("totalSupply")
        assert str(key) == "totalSupply"


def test_split_path_arguments_handles_empty_path():
    assert split_path_arguments("") == []
    assert split_path_arguments("/") == []
    assert split_path_arguments("a/b") == ["a", "b"]
