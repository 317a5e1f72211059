from io import BytesIO

import pandas as pd
import pytest

from app import db
from app.errors import NotFoundError, StateError, ValidationError
from app.models import Produk, StockOpnameItem
from app.opname_io import (
    EXPORT_COLUMNS,
    dataframe_to_rows,
    export_rows,
    import_rows,
    read_upload,
    render_export,
)
from app.stock_opname import StockOpnameService


@pytest.fixture()
def draft_id(app, seed):
    with app.app_context():
        return StockOpnameService().create_session(seed.branch_a, seed.gudang_a).id


def test_export_rows_in_insertion_order_and_restartable(app, seed, draft_id):
    with app.app_context():
        service = StockOpnameService()
        service.add_item(draft_id, seed.gula, 9, "rak 2")
        service.add_item(draft_id, seed.beras, 8)

        rows = export_rows(draft_id)
        first_pass = list(rows)
        assert [row["product_sku"] for row in first_pass] == ["SKU-002", "SKU-001"]
        assert first_pass[0] == {
            "product_sku": "SKU-002",
            "product_name": "Gula 1kg",
            "system_quantity": 5,
            "counted_quantity": 9,
            "difference": 4,
            "notes": "rak 2",
        }
        assert list(rows) == first_pass

        # iterasi berikutnya membaca item terbaru
        service.add_item(draft_id, seed.minyak, 1)
        assert len(list(rows)) == 3


def test_export_rows_unknown_or_other_branch(app, seed, draft_id):
    with app.app_context():
        with pytest.raises(NotFoundError):
            export_rows(999)
        with pytest.raises(NotFoundError):
            export_rows(draft_id, branch_id=seed.branch_b)


def test_import_rows_reports_each_rejected_row(app, seed, draft_id):
    rows = [
        {"product_sku": "SKU-001", "counted_quantity": "8", "notes": "impor"},
        {"product_sku": "TIDAK-ADA", "counted_quantity": "1"},
        {"product_sku": "SKU-002", "counted_quantity": "-1"},
        {"product_sku": "MYK-2", "counted_quantity": "3", "difference": "999", "system_quantity": "0"},
        {"product_sku": "SKU-001", "counted_quantity": "2"},
    ]
    with app.app_context():
        result = import_rows(draft_id, rows)

        assert len(result.accepted) == 2
        assert [r["line"] for r in result.rejected] == [2, 3, 5]
        assert [r["code"] for r in result.rejected] == ["NOT_FOUND", "VALIDATION_ERROR", "DUPLICATE_ITEM"]
        assert all(r["reason"] for r in result.rejected)
        assert result.to_dict()["summary"] == {"accepted": 2, "rejected": 3}

        items = StockOpnameItem.query.filter_by(session_id=draft_id).order_by(StockOpnameItem.id).all()
        assert [(i.product_id, i.system_quantity, i.counted_quantity) for i in items] == [
            (seed.beras, 10, 8),
            (seed.minyak, 0, 3),
        ]
        assert items[0].notes == "impor"


def test_import_rows_rejects_oversized_quantity_per_row(app, seed, draft_id):
    rows = [
        {"product_sku": "SKU-001", "counted_quantity": "7"},
        {"product_sku": "SKU-002", "counted_quantity": "99999999999999999999"},
        {"product_sku": "MYK-2", "counted_quantity": 1e20},
    ]
    with app.app_context():
        result = import_rows(draft_id, rows)

        # baris valid tetap masuk walau baris lain angkanya kebesaran
        assert len(result.accepted) == 1
        assert [r["line"] for r in result.rejected] == [2, 3]
        assert {r["code"] for r in result.rejected} == {"VALIDATION_ERROR"}
        items = StockOpnameItem.query.filter_by(session_id=draft_id).all()
        assert [(i.product_id, i.counted_quantity) for i in items] == [(seed.beras, 7)]


def test_import_rows_accepts_numeric_sku_cells(app, seed, draft_id):
    with app.app_context():
        # sel SKU dari Excel terbaca sebagai angka
        kopi = Produk(branch_id=seed.branch_a, kode_produk="KPI-1", sku="12345", nama_produk="Kopi", stok=4)
        db.session.add(kopi)
        db.session.commit()

        rows = [
            {"product_sku": "SKU-001", "counted_quantity": 7},
            {"product_sku": 12345, "counted_quantity": 3},
            {"product_sku": 67890, "counted_quantity": 1},
            {"product_sku": 12345.0, "counted_quantity": 2},
        ]
        result = import_rows(draft_id, rows)

        assert len(result.accepted) == 2
        assert [(r["line"], r["code"]) for r in result.rejected] == [(3, "NOT_FOUND"), (4, "DUPLICATE_ITEM")]
        item = StockOpnameItem.query.filter_by(session_id=draft_id, product_id=kopi.id).one()
        assert item.system_quantity == 4
        assert item.difference == -1


def test_import_rows_accepts_export_tuples(app, seed, draft_id):
    with app.app_context():
        result = import_rows(draft_id, [("SKU-002", "Gula 1kg", 5, 6, 1, None)])
        assert len(result.accepted) == 1
        assert result.rejected == []


def test_import_rows_requires_draft(app, seed, draft_id):
    with app.app_context():
        service = StockOpnameService()
        service.add_item(draft_id, seed.beras, 8)
        service.submit(draft_id, seed.gudang_a)
        with pytest.raises(StateError):
            import_rows(draft_id, [{"product_sku": "SKU-002", "counted_quantity": "1"}])
        assert StockOpnameItem.query.filter_by(session_id=draft_id).count() == 1


def test_import_uses_session_branch(app, seed):
    with app.app_context():
        opname = StockOpnameService().create_session(seed.branch_b, seed.gudang_b)
        result = import_rows(opname.id, [{"product_sku": "SKU-001", "counted_quantity": 7}])
        item = db.session.get(StockOpnameItem, result.accepted[0])
        assert item.product_id == seed.beras_b
        assert item.difference == 0


def test_render_export_csv_columns(app, seed, draft_id):
    with app.app_context():
        StockOpnameService().add_item(draft_id, seed.beras, 12)
        content, mimetype, extension = render_export(export_rows(draft_id), "csv")

    lines = content.decode("utf-8").splitlines()
    assert lines[0] == ",".join(EXPORT_COLUMNS)
    assert lines[1] == "SKU-001,Beras 5kg,10,12,2,"
    assert mimetype.startswith("text/csv")
    assert extension == "csv"


def test_render_export_empty_session_has_header_only():
    content, _, _ = render_export([], "csv")
    assert content.decode("utf-8").splitlines() == [",".join(EXPORT_COLUMNS)]


def test_render_export_unknown_format():
    with pytest.raises(ValidationError):
        render_export([], "pdf")


def test_xlsx_export_can_be_read_back(app, seed, draft_id):
    with app.app_context():
        StockOpnameService().add_item(draft_id, seed.gula, 3, "rusak 2")
        content, _, extension = render_export(export_rows(draft_id), "xlsx")

    assert extension == "xlsx"
    rows = read_upload("opname.xlsx", BytesIO(content))
    assert rows == [
        {
            "product_sku": "SKU-002",
            "product_name": "Gula 1kg",
            "system_quantity": "5",
            "counted_quantity": "3",
            "difference": "-2",
            "notes": "rusak 2",
        }
    ]


def test_read_upload_csv_normalizes_headers():
    data = b"Product SKU,Counted Quantity,Notes\nSKU-001,8,\nSKU-002,5,ok\n"
    rows = read_upload("hitung.csv", BytesIO(data))
    assert rows == [
        {"product_sku": "SKU-001", "counted_quantity": "8", "notes": None},
        {"product_sku": "SKU-002", "counted_quantity": "5", "notes": "ok"},
    ]


def test_read_upload_rejects_bad_files():
    with pytest.raises(ValidationError) as excinfo:
        read_upload("hitung.csv", BytesIO(b"sku,jumlah\nA,1\n"))
    assert excinfo.value.details["missing_columns"] == ["product_sku", "counted_quantity"]

    with pytest.raises(ValidationError):
        read_upload("hitung.pdf", BytesIO(b"%PDF"))


def test_dataframe_to_rows_turns_nan_into_none():
    df = pd.DataFrame({"product_sku": ["A", None], "counted_quantity": [1, float("nan")]})
    assert dataframe_to_rows(df) == [
        {"product_sku": "A", "counted_quantity": 1.0},
        {"product_sku": None, "counted_quantity": None},
    ]


def test_export_then_import_into_fresh_draft(app, seed, draft_id):
    with app.app_context():
        service = StockOpnameService()
        service.add_item(draft_id, seed.beras, 12)
        service.add_item(draft_id, seed.gula, 1, "pecah")
        exported = list(export_rows(draft_id))

        # stok berubah di antara export dan import
        db.session.get(Produk, seed.beras).stok = 20
        db.session.commit()

        fresh = service.create_session(seed.branch_a, seed.gudang_a).id
        result = import_rows(fresh, exported)
        assert result.rejected == []

        def pairs(session_id):
            return sorted(
                (item.product_id, item.counted_quantity)
                for item in StockOpnameItem.query.filter_by(session_id=session_id)
            )

        assert pairs(fresh) == pairs(draft_id)
        beras = StockOpnameItem.query.filter_by(session_id=fresh, product_id=seed.beras).one()
        assert beras.system_quantity == 20
        assert beras.difference == -8
