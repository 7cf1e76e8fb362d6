import pytest

from core.errors import InvalidParams
from core.params import LIST, MAP, SCALAR, ParamNode, ParamTree, parse_param_value


class TestParamTree:

    @pytest.mark.parametrize("stored, key, value, expected", [
        (
            {"ruleset_options": {"ruleset": "gosec"}},
            "ruleset_options.exclude",
            "vendor",
            {"ruleset_options": {"ruleset": "gosec", "exclude": "vendor"}},
        ),
        (
            {"ruleset_options": {"ruleset": "gosec"}},
            "ruleset_type",
            0,
            {"ruleset_type": 0, "ruleset_options": {"ruleset": "gosec"}},
        ),
        (
            {"sha": 1234, "image": {"tag": "latest"}},
            "image.image_detail.hash",
            "12345890",
            {"sha": 1234, "image": {"tag": "latest", "image_detail": {"hash": "12345890"}}},
        ),
    ], ids=["one dot", "no dot", "two dots"])
    def test_set_path(self, stored, key, value, expected):
        tree = ParamTree.from_value(stored)

        tree.set_path(key, value)

        assert tree.to_value() == expected

    def test_set_path_too_deep(self):
        tree = ParamTree()

        with pytest.raises(InvalidParams):
            tree.set_path("a.b.c.d", "x")

    def test_set_path_duplicate_nested_leaf(self):
        tree = ParamTree.from_value({"image": {"tag": "latest"}})

        with pytest.raises(InvalidParams):
            tree.set_path("image.tag", "stable")

    def test_set_path_top_level_overwrites(self):
        tree = ParamTree.from_value({"ruleset_type": 1})

        tree.set_path("ruleset_type", 2)

        assert tree.to_value() == {"ruleset_type": 2}

    def test_set_path_through_scalar(self):
        tree = ParamTree.from_value({"image": "alpine"})

        with pytest.raises(InvalidParams):
            tree.set_path("image.tag", "latest")

    @pytest.mark.parametrize("key", ["", ".a", "a..b", "a."])
    def test_set_path_malformed_key(self, key):
        with pytest.raises(InvalidParams):
            ParamTree().set_path(key, "x")

    def test_node_kinds(self):
        tree = ParamTree.from_value({"name": "x", "tags": ["a", "b"], "opts": {"n": 1}})

        assert tree.get("name").kind == SCALAR
        assert tree.get("tags").kind == LIST
        assert tree.get("opts").kind == MAP
        assert isinstance(tree.get("opts"), ParamTree)

    def test_has_path(self):
        tree = ParamTree.from_value({"image": {"detail": {"hash": "1"}}})

        assert tree.has_path("image.detail.hash")
        assert not tree.has_path("image.tag")
        assert not tree.has_path("image.detail.hash.x")

    def test_merge_missing_keeps_existing(self):
        tree = ParamTree.from_value({"a": 1})

        tree.merge_missing(ParamTree.from_value({"a": 2, "b": 3}))

        assert tree.to_value() == {"a": 1, "b": 3}

    def test_unsupported_value(self):
        with pytest.raises(InvalidParams):
            ParamNode.from_value(object())

    def test_equality(self):
        assert ParamTree.from_value({"a": [1, {"b": True}]}) == ParamTree.from_value({"a": [1, {"b": True}]})
        assert ParamNode.scalar(1) != ParamNode.scalar("1")


class TestParseParamValue:

    @pytest.mark.parametrize("param_type, raw, expected", [
        ("string", "p/ci", "p/ci"),
        ("string_slice", "a;b;c", "a,b,c"),
        ("int", "-3", -3),
        ("uint", "7", 7),
        ("bool", "t", True),
        ("bool", "TRUE", True),
        ("bool", "0", False),
        ("bool", "false", False),
    ])
    def test_valid(self, param_type, raw, expected):
        assert parse_param_value(param_type, raw) == expected

    @pytest.mark.parametrize("param_type, raw", [
        ("int", "abc"),
        ("uint", "-1"),
        ("bool", "yes"),
        ("float", "1.0"),
    ])
    def test_invalid(self, param_type, raw):
        with pytest.raises(InvalidParams):
            parse_param_value(param_type, raw)
