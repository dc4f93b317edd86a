"""
Unit tests for identity normalization.

Tests cover:
- Name normalization
- Resolution priority (key/legacy id, href, name, orphan)
- Structure preservation and re-normalization
"""
from fakes import entry, folder, item

from app.modhub.modules.hierarchy.nodes import Item
from app.modhub.modules.hierarchy.normalize import build_index, normalize_forest, normalize_name


class TestNormalizeName:
    def test_trims_collapses_and_lowercases(self):
        assert normalize_name("  Payments   Desk ") == "payments desk"
        assert normalize_name("PAYMENTS\tDESK") == "payments desk"

    def test_empty_and_none(self):
        assert normalize_name("") == ""
        assert normalize_name(None) == ""
        assert normalize_name("   ") == ""

    def test_non_latin_names_pass_through(self):
        assert normalize_name(" پرداخت ") == "پرداخت"


class TestResolution:
    def test_exact_key_match(self):
        out = normalize_forest([item("orders")], [entry("orders")])
        assert out[0].canonical_key == "orders"

    def test_legacy_id_match(self):
        saved = [Item(id="module-orders", canonical_key="module-orders", display_name="Whatever")]
        out = normalize_forest(saved, [entry("orders", legacy=["module-orders"])])
        assert out[0].canonical_key == "orders"
        assert out[0].id == "orders"

    def test_id_used_when_key_unknown(self):
        saved = [Item(id="orders", canonical_key="stale-key", display_name="x")]
        out = normalize_forest(saved, [entry("orders")])
        assert out[0].canonical_key == "orders"

    def test_href_match(self):
        saved = [Item(id="x1", canonical_key="x1", display_name="Old label", href="/pay")]
        out = normalize_forest(saved, [entry("payments", "Payments", href="/pay")])
        assert out[0].canonical_key == "payments"

    def test_href_beats_name(self):
        saved = [Item(id="x1", canonical_key="x1", display_name="Orders", href="/pay")]
        catalog = [entry("orders", "Orders", href="/orders"), entry("payments", "Payments", href="/pay")]
        out = normalize_forest(saved, catalog)
        assert out[0].canonical_key == "payments"

    def test_name_match_preserves_position(self):
        # saved leaf only carries a legacy id and a name
        saved = [
            item("orders"),
            Item(id="old-id-123", canonical_key="old-id-123", display_name="پرداخت"),
            item("projects"),
        ]
        catalog = [entry("orders"), entry("payments", "پرداخت", href="/pay"), entry("projects")]
        out = normalize_forest(saved, catalog)
        assert [n.canonical_key for n in out] == ["orders", "payments", "projects"]

    def test_orphan_kept_unchanged(self):
        orphan = Item(id="gone", canonical_key="gone", display_name="Gone module")
        out = normalize_forest([orphan], [entry("orders")])
        assert out == [orphan]

    def test_first_catalog_entry_wins_shared_name(self):
        idx = build_index([entry("a", "Same"), entry("b", "Same")])
        assert idx.by_name["same"] == "a"

    def test_canonical_key_beats_other_entries_legacy_id(self):
        idx = build_index([entry("a", legacy=["b"]), entry("b")])
        assert idx.by_id["b"] == "b"


class TestStructure:
    def test_folders_untouched_but_children_resolved(self):
        saved = [folder("f1", [Item(id="m1", canonical_key="m1", display_name="Orders")], name="Mine", is_open=True)]
        out = normalize_forest(saved, [entry("orders", "Orders")])
        assert out[0].id == "f1"
        assert out[0].display_name == "Mine"
        assert out[0].is_open is True
        assert out[0].children[0].canonical_key == "orders"

    def test_input_not_mutated(self):
        leaf = Item(id="m1", canonical_key="m1", display_name="Orders")
        saved = [folder("f1", [leaf])]
        normalize_forest(saved, [entry("orders", "Orders")])
        assert saved[0].children[0] is leaf

    def test_renormalizing_is_noop(self):
        saved = [
            Item(id="old", canonical_key="old", display_name="Orders"),
            folder("f1", [Item(id="p", canonical_key="p", display_name="x", href="/pay")]),
            Item(id="orphan", canonical_key="orphan", display_name="Orphan"),
        ]
        catalog = [entry("orders", "Orders"), entry("payments", href="/pay")]
        once = normalize_forest(saved, catalog)
        assert normalize_forest(once, catalog) == once
