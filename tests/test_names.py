from fakes import folder, item

from app.modhub.modules.hierarchy.names import (
    CustomName,
    apply_overrides,
    custom_names_from_json,
    dump_custom_names,
    parse_custom_names,
    rename,
    resolve_module_info,
)


def test_rename_item_records_override_and_fans_out():
    calls = []

    def fan_out(key, name):
        calls.append((key, name))
        return 2

    out = rename({}, item("orders"), "My Orders", "mine", fan_out=fan_out)
    assert out == {"orders": CustomName("My Orders", "mine")}
    assert calls == [("orders", "My Orders")]


def test_rename_folder_does_not_fan_out():
    calls = []
    out = rename({}, folder("f1"), "Ops", "", fan_out=lambda k, n: calls.append(k))
    assert out["f1"].display_name == "Ops"
    assert calls == []


def test_rename_survives_fan_out_failure(caplog):
    def boom(key, name):
        raise ConnectionError("db down")

    original = {}
    out = rename(original, item("orders"), "X", "", fan_out=boom)
    assert out["orders"].display_name == "X"
    assert original == {}
    assert "fan-out failed" in caplog.text


def test_apply_overrides_recurses_into_folders():
    forest = [folder("f1", [item("a")]), item("b")]
    names = {"a": CustomName("Alpha", "first"), "f1": CustomName("Mine")}
    out = apply_overrides(forest, names)
    assert out[0].display_name == "Mine"
    assert out[0].children[0].display_name == "Alpha"
    assert out[0].children[0].description == "first"
    assert out[1].display_name == "B"
    assert forest[0].children[0].display_name == "A"


def test_resolve_module_info_priority():
    forest = [item("a", "From tree")]
    names = {"b": CustomName("Custom B", "")}
    assert resolve_module_info("b", "Default", "d", names, forest) == ("Custom B", "d")
    assert resolve_module_info("a", "Default", "d", names, forest) == ("From tree", "d")
    assert resolve_module_info("c", "Default", "d", names, forest) == ("Default", "d")


def test_custom_names_json_accepts_legacy_name_field():
    parsed = custom_names_from_json({"a": {"name": "Old"}, "b": {"displayName": "New", "description": "x"}, "c": 5})
    assert parsed == {"a": CustomName("Old", ""), "b": CustomName("New", "x")}


def test_parse_custom_names_bad_input():
    assert parse_custom_names(None) == {}
    assert parse_custom_names("{not json") == {}
    assert parse_custom_names("[]") == {}


def test_dump_is_stable_and_keeps_unicode():
    raw = dump_custom_names({"b": CustomName("پرداخت"), "a": CustomName("A")})
    assert raw.index('"a"') < raw.index('"b"')
    assert "پرداخت" in raw
    assert parse_custom_names(raw)["b"].display_name == "پرداخت"
