import logging
import os
from io import BytesIO

import pandas as pd

from app import db
from app.errors import NotFoundError, ValidationError
from app.models import StockOpnameItem, StockOpnameSession
from app.stock_opname import StockOpnameService

EXPORT_COLUMNS = (
    "product_sku",
    "product_name",
    "system_quantity",
    "counted_quantity",
    "difference",
    "notes",
)
REQUIRED_IMPORT_COLUMNS = ("product_sku", "counted_quantity")

EXPORT_FORMATS = {
    "csv": ("text/csv; charset=utf-8", "csv"),
    "xlsx": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "xlsx",
    ),
}


def _clean_cell(value):
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class OpnameRowExport:
    """
    Baris export item stock opname, urut sesuai urutan input.

    Iterasi bersifat lazy dan bisa diulang; setiap iterasi membaca ulang
    item yang ada saat itu.
    """

    def __init__(self, session_id, batch_size=500):
        self.session_id = session_id
        self.batch_size = batch_size

    def __iter__(self):
        query = (
            StockOpnameItem.query.filter_by(session_id=self.session_id)
            .order_by(StockOpnameItem.id.asc())
            .yield_per(self.batch_size)
        )
        for item in query:
            yield {
                "product_sku": item.product_sku,
                "product_name": item.product_name,
                "system_quantity": item.system_quantity,
                "counted_quantity": item.counted_quantity,
                "difference": item.difference,
                "notes": item.notes,
            }


class ImportResult:
    def __init__(self):
        self.accepted = []
        self.rejected = []

    def to_dict(self):
        return {
            "accepted": list(self.accepted),
            "rejected": list(self.rejected),
            "summary": {
                "accepted": len(self.accepted),
                "rejected": len(self.rejected),
            },
        }


def export_rows(session_id, branch_id=None):
    opname = db.session.get(StockOpnameSession, session_id)
    if not opname or (branch_id is not None and opname.branch_id != branch_id):
        raise NotFoundError(
            f"Stock opname dengan ID {session_id} tidak ditemukan.",
            session_id=session_id,
        )
    return OpnameRowExport(opname.id)


def _normalize_row(row):
    if isinstance(row, dict):
        return dict(row)
    return dict(zip(EXPORT_COLUMNS, row))


def import_rows(session_id, rows, service=None):
    """
    Tambahkan item dari baris import. Setiap baris diproses di savepoint
    sendiri: baris gagal dicatat di ``rejected`` tanpa membatalkan baris lain.
    Kolom ``system_quantity`` dan ``difference`` diabaikan.
    """
    service = service or StockOpnameService()
    result = ImportResult()
    with service.unit_of_work("mengimpor item"):
        opname = service.lock_draft(session_id)
        for line, raw in enumerate(rows, start=1):
            row = _normalize_row(raw)
            try:
                with db.session.begin_nested():
                    item = service.add_item_by_sku(
                        opname,
                        _clean_cell(row.get("product_sku")),
                        _clean_cell(row.get("counted_quantity")),
                        _clean_cell(row.get("notes")),
                    )
            except (NotFoundError, ValidationError) as exc:
                result.rejected.append(
                    {
                        "line": line,
                        "row": {key: _clean_cell(value) for key, value in row.items()},
                        "reason": exc.message,
                        "code": exc.code,
                    }
                )
                continue
            result.accepted.append(item.id)
        code = opname.code
    logging.info(
        "Import stock opname %s: %s baris diterima, %s ditolak",
        code,
        len(result.accepted),
        len(result.rejected),
    )
    return result


def rows_to_dataframe(rows):
    return pd.DataFrame(list(rows), columns=list(EXPORT_COLUMNS))


def dataframe_to_rows(df):
    df = df.rename(columns=lambda name: str(name).strip().lower().replace(" ", "_"))
    missing = [column for column in REQUIRED_IMPORT_COLUMNS if column not in df.columns]
    if missing:
        raise ValidationError(
            "Format file tidak valid! Kolom wajib tidak ada: " + ", ".join(missing),
            missing_columns=missing,
        )
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def read_upload(filename, stream):
    """Baca file CSV/XLSX unggahan menjadi list dict per baris."""
    extension = os.path.splitext(filename or "")[1].lower()
    try:
        if extension == ".csv":
            df = pd.read_csv(stream, dtype=str)
        elif extension in (".xlsx", ".xls"):
            df = pd.read_excel(stream, dtype=str)
        else:
            raise ValidationError("File harus berformat .csv atau .xlsx.", filename=filename)
    except ValidationError:
        raise
    except Exception as exc:
        raise ValidationError(f"Gagal membaca file: {exc}", filename=filename) from exc
    return dataframe_to_rows(df)


def render_export(rows, fmt="csv"):
    """Hasilkan (bytes, mimetype, extension) untuk baris export."""
    fmt = (fmt or "csv").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Format export tidak dikenal: {fmt}.", format=fmt)
    mimetype, extension = EXPORT_FORMATS[fmt]
    df = rows_to_dataframe(rows)
    if fmt == "csv":
        return df.to_csv(index=False).encode("utf-8"), mimetype, extension
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="stock_opname")
    output.seek(0)
    return output.read(), mimetype, extension
