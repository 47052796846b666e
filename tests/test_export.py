from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from equipment_stock.domain.errors import InvalidInput
from equipment_stock.domain.models import Item
from equipment_stock.inventory.export import BOM, read_csv, render_csv, write_report


def _item(**overrides) -> Item:
    base = dict(
        id="id_1",
        name="Monitor",
        description="",
        device_type="Monitor",
        serial_number="MN-1",
        location="Oficina 2",
        quantity=3,
        last_updated="2024-05-01T10:00:00.000Z",
    )
    base.update(overrides)
    return Item(**base)


def test_render_csv_header_and_rows():
    text = render_csv([_item(), _item(id="id_2", name="Ratón", device_type="", quantity=0)])
    lines = text.split("\n")
    assert lines[0] == "Nombre,Descripción,Tipo de Dispositivo,Cantidad,N/S,Ubicación"
    assert lines[1] == "Monitor,,Monitor,3,MN-1,Oficina 2"
    assert lines[2] == "Ratón,,,0,MN-1,Oficina 2"
    assert not text.endswith("\n")


def test_fields_with_commas_and_quotes_survive_a_reader():
    tricky = _item(name='Monitor 24", curvo', description="Dell, Inc.\nsegunda línea")
    text = render_csv([tricky])

    assert '"Monitor 24"", curvo"' in text
    (row,) = read_csv(text)
    assert row["Nombre"] == 'Monitor 24", curvo'
    assert row["Descripción"] == "Dell, Inc.\nsegunda línea"
    assert row["Cantidad"] == "3"


def test_write_report_uses_bom_and_dated_filename(tmp_path: Path):
    path = write_report([_item()], str(tmp_path / "out"), on=date(2024, 5, 1))

    assert Path(path).name == "informe_stock_2024-05-01.csv"
    raw = Path(path).read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    text = raw.decode("utf-8")
    assert text.startswith(BOM + "Nombre,")
    assert read_csv(text)[0]["N/S"] == "MN-1"


def test_write_report_refuses_empty_inventory(tmp_path: Path):
    with pytest.raises(InvalidInput):
        write_report([], str(tmp_path))
    assert list(tmp_path.iterdir()) == []
