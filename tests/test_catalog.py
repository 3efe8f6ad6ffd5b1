import json

import pytest

from salesdesk.catalog import CatalogIndex, parse_catalog_document
from conftest import CATALOG_PATH


def _by_title(index):
    return {item.title: item for item in index.current_catalog()}


def test_load_flattens_categories_in_document_order(catalog_index):
    assert len(catalog_index.current_catalog()) == 7
    assert catalog_index.categories() == ["RETAY", "EKOL", "MUNICION", "CLUB"]
    assert catalog_index.meta.item_count == 7
    assert catalog_index.meta.file_name == CATALOG_PATH.name
    assert len(catalog_index.meta.sha256) == 64


def test_item_fields_and_prices(catalog_index):
    items = _by_title(catalog_index)
    g17 = items["Retay G17 Negra"]
    assert g17.category == "RETAY"
    assert g17.brand == "Retay"
    assert g17.available is True
    assert g17.prices == (("plus", "$1.250.000"), ("pro", "$1.290.000"))
    assert g17.price_label == "plus: $1.250.000 | pro: $1.290.000"
    assert g17.title_lower == "retay g17 negra"

    assert items["Retay Volga"].available is False
    assert items["Retay S2022 Fume"].color == "Fume, Cromado"
    assert items["Caja Oskurzan 9mm x50"].price_label == "$180.000"
    assert items["Caja Oskurzan 9mm x50"].keywords == frozenset({"balas", "municion de goma"})
    club = items["Membresia Club Plan Pro"]
    assert club.available is True
    assert club.tags_lower == ("carnet", "club", "membresia")


def test_failed_reload_keeps_previous_snapshot(tmp_path, catalog_index):
    before = catalog_index.current_catalog()
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert catalog_index.load(broken) is False
    assert catalog_index.current_catalog() is before

    assert catalog_index.load(tmp_path / "missing.json") is False
    assert catalog_index.current_catalog() is before


def test_reload_swaps_snapshot(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"categorias": {"A": [{"titulo": "Uno", "disponible": True}]}}), encoding="utf-8")
    index = CatalogIndex(path)
    assert index.load()
    first = index.current_catalog()

    path.write_text(
        json.dumps({"categorias": {"A": [{"titulo": "Uno"}, {"titulo": "Dos"}]}}),
        encoding="utf-8",
    )
    assert index.load()
    assert [item.title for item in index.current_catalog()] == ["Uno", "Dos"]
    assert [item.title for item in first] == ["Uno"]


def test_flat_item_lists_use_category_field():
    items = parse_catalog_document(
        [
            {"Nombre": "Revolver X", "Categoría": "EKOL", "Disponible": "no"},
            {"title": "Without category"},
            "not a record",
            {"descripcion": "no title, skipped"},
        ]
    )
    assert [(item.title, item.category, item.available) for item in items] == [
        ("Revolver X", "EKOL", False),
        ("Without category", "", False),
    ]


def test_unknown_document_shape_is_rejected():
    with pytest.raises(ValueError):
        parse_catalog_document({"productos": 3})


def test_summary_counts_per_category(catalog_index):
    summary = catalog_index.summary()
    assert summary.startswith("RESUMEN DEL CATALOGO:")
    assert "- RETAY: 3 productos" in summary
    assert "- CLUB: 1 productos" in summary
    assert summary.endswith("Total: 7 productos disponibles.")
