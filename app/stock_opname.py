"""
Mesin rekonsiliasi stock opname.

Alur status: DRAFT -> SUBMIT -> APPROVED | REJECTED. Setiap perpindahan
status adalah compare-and-set (``UPDATE ... WHERE status = :expected``) di
dalam satu transaksi, sehingga dari dua approve/reject yang bersamaan hanya
satu yang bisa commit. Approve menerapkan semua selisih item ke stok dalam
transaksi yang sama dengan perubahan status: semua berhasil atau tidak ada
yang tersimpan.
"""
import logging
import math
import re
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from app import db
from app.errors import (
    ConcurrencyConflictError,
    DuplicateItemError,
    NotFoundError,
    PersistenceError,
    StockOpnameError,
    ValidationError,
)
from app.inventory import SqlInventoryStore
from app.models import (
    Branch,
    StockMovement,
    StockOpnameItem,
    StockOpnameSession,
    compute_totals,
)
from app.opname_state import OpnameStatus, ensure_editable, ensure_transition
from app.time_utils import local_now

MOVEMENT_REF_TYPE = "STOCK_OPNAME"
# batas kolom INTEGER 32-bit
MAX_QUANTITY = 2147483647

__all__ = ["StockOpnameService", "compute_totals", "parse_counted_quantity"]


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_counted_quantity(value):
    """Jumlah fisik harus bilangan bulat 0..MAX_QUANTITY ("5", 5, 5.0 diterima)."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("Jumlah fisik wajib diisi dengan angka.", counted_quantity=value)
    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            raise ValidationError("Jumlah fisik harus bilangan bulat.", counted_quantity=value)
        value = int(value)
    elif not isinstance(value, int):
        text = str(value).strip()
        if re.fullmatch(r"-?\d+(\.0+)?", text):
            value = int(text.split(".", 1)[0])
        else:
            raise ValidationError("Jumlah fisik harus bilangan bulat.", counted_quantity=value)
    if value < 0:
        raise ValidationError("Jumlah fisik tidak boleh negatif.", counted_quantity=value)
    if value > MAX_QUANTITY:
        raise ValidationError(
            f"Jumlah fisik maksimal {MAX_QUANTITY}.", counted_quantity=str(value)
        )
    return value


class StockOpnameService:
    def __init__(self, inventory=None):
        self.inventory = inventory or SqlInventoryStore()

    # ------------------------------------------------------------------
    # helpers

    @contextmanager
    def unit_of_work(self, action):
        try:
            yield
            db.session.commit()
        except StockOpnameError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logging.exception("Gagal %s stock opname", action)
            raise PersistenceError(f"Gagal {action} stock opname.") from exc
        except Exception:
            db.session.rollback()
            raise

    def _load(self, session_id, lock=False, with_items=False):
        query = StockOpnameSession.query.filter_by(id=session_id)
        if with_items:
            query = query.options(joinedload(StockOpnameSession.items))
        if lock:
            query = query.with_for_update().populate_existing()
        opname = query.first()
        if not opname:
            raise NotFoundError(
                f"Stock opname dengan ID {session_id} tidak ditemukan.",
                session_id=session_id,
            )
        return opname

    def _compare_and_set(self, session_id, expected, **values):
        values.setdefault("updated_at", local_now())
        result = db.session.execute(
            update(StockOpnameSession)
            .where(
                StockOpnameSession.id == session_id,
                StockOpnameSession.status == expected.value,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            logging.warning(
                "Transisi stock opname %s dari %s gagal: status sudah berubah",
                session_id,
                expected.value,
            )
            raise ConcurrencyConflictError(
                "Status stock opname sudah diubah oleh proses lain. Muat ulang data lalu coba lagi.",
                session_id=session_id,
                expected=expected.value,
            )

    def _touch_draft(self, session_id):
        # Kunci baris sesi selama transaksi dan pastikan masih DRAFT.
        self._compare_and_set(session_id, OpnameStatus.DRAFT)

    def _next_code(self, branch_id, now):
        prefix = current_app.config.get("OPNAME_CODE_PREFIX", "SO")
        base = f"{prefix}-{branch_id:02d}-{now.strftime('%Y%m%d')}-"
        existing = (
            db.session.query(StockOpnameSession.code)
            .filter(StockOpnameSession.code.like(f"{base}%"))
            .all()
        )
        last_seq = 0
        for (code,) in existing:
            suffix = code[len(base):]
            if suffix.isdigit():
                last_seq = max(last_seq, int(suffix))
        return f"{base}{last_seq + 1:04d}"

    def _build_item(self, opname, product, counted_quantity, notes):
        duplicate = StockOpnameItem.query.filter_by(
            session_id=opname.id, product_id=product.id
        ).first()
        if duplicate:
            raise DuplicateItemError(
                f"Produk {product.nama_produk} sudah ada di stock opname ini.",
                product_id=product.id,
                item_id=duplicate.id,
            )
        # snapshot stok sistem saat item ditambahkan
        system_quantity = self.inventory.get_quantity(product.id)
        item = StockOpnameItem(
            session_id=opname.id,
            product_id=product.id,
            product_sku=product.sku or product.kode_produk,
            product_name=product.nama_produk,
            system_quantity=system_quantity,
            counted_quantity=counted_quantity,
            notes=_clean_text(notes),
            created_at=local_now(),
        )
        db.session.add(item)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise DuplicateItemError(
                f"Produk {product.nama_produk} sudah ada di stock opname ini.",
                product_id=product.id,
            ) from exc
        return item

    # ------------------------------------------------------------------
    # operasi

    def create_session(self, branch_id, creator_id, notes=None):
        if db.session.get(Branch, branch_id) is None:
            raise NotFoundError(f"Cabang dengan ID {branch_id} tidak ditemukan.", branch_id=branch_id)
        attempts = current_app.config.get("OPNAME_CODE_MAX_ATTEMPTS", 5)
        for attempt in range(1, attempts + 1):
            now = local_now()
            code = self._next_code(branch_id, now)
            opname = StockOpnameSession(
                code=code,
                branch_id=branch_id,
                status=OpnameStatus.DRAFT.value,
                notes=_clean_text(notes),
                created_by=creator_id,
                created_at=now,
                updated_at=now,
            )
            db.session.add(opname)
            try:
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                # hanya bentrok kode yang diulang; pelanggaran constraint lain langsung gagal
                if db.session.query(StockOpnameSession.id).filter_by(code=code).first() is None:
                    logging.exception("Gagal membuat stock opname")
                    raise PersistenceError("Gagal membuat stock opname.") from exc
                logging.warning(
                    "Kode stock opname bentrok (percobaan %s/%s), generate ulang",
                    attempt,
                    attempts,
                )
                continue
            except SQLAlchemyError as exc:
                db.session.rollback()
                logging.exception("Gagal membuat stock opname")
                raise PersistenceError("Gagal membuat stock opname.") from exc
            logging.info(
                "Stock opname %s dibuat untuk cabang %s oleh user %s",
                opname.code,
                branch_id,
                creator_id,
            )
            return opname
        raise PersistenceError("Gagal membuat kode stock opname yang unik.")

    def get_session(self, session_id, branch_id=None):
        opname = self._load(session_id, with_items=True)
        if branch_id is not None and opname.branch_id != branch_id:
            raise NotFoundError(
                f"Stock opname dengan ID {session_id} tidak ditemukan.",
                session_id=session_id,
            )
        return opname

    def lock_draft(self, session_id):
        """Ambil sesi DRAFT dan kunci barisnya; dipanggil di dalam unit_of_work."""
        opname = self._load(session_id)
        ensure_editable(opname.status)
        self._touch_draft(opname.id)
        return opname

    def update_notes(self, session_id, notes):
        with self.unit_of_work("memperbarui catatan"):
            opname = self._load(session_id)
            ensure_editable(opname.status)
            self._compare_and_set(opname.id, OpnameStatus.DRAFT, notes=_clean_text(notes))
        return opname

    def add_item(self, session_id, product_id, counted_quantity, notes=None):
        with self.unit_of_work("menambah item"):
            opname = self._load(session_id)
            ensure_editable(opname.status)
            product = self.inventory.get_product(opname.branch_id, product_id)
            counted = parse_counted_quantity(counted_quantity)
            self._touch_draft(opname.id)
            item = self._build_item(opname, product, counted, notes)
        return item

    def add_item_by_sku(self, opname, sku, counted_quantity, notes=None):
        """Dipakai import; pemanggil yang mengatur transaksi dan status."""
        product = self.inventory.find_by_sku(opname.branch_id, sku)
        counted = parse_counted_quantity(counted_quantity)
        return self._build_item(opname, product, counted, notes)

    def remove_item(self, session_id, item_id):
        with self.unit_of_work("menghapus item"):
            opname = self._load(session_id)
            ensure_editable(opname.status)
            item = StockOpnameItem.query.filter_by(id=item_id, session_id=opname.id).first()
            if not item:
                raise NotFoundError(
                    f"Item dengan ID {item_id} tidak ditemukan di stock opname ini.",
                    item_id=item_id,
                )
            self._touch_draft(opname.id)
            db.session.delete(item)

    def submit(self, session_id, actor_id):
        with self.unit_of_work("mengirim"):
            opname = self._load(session_id, lock=True)
            ensure_transition(opname.status, OpnameStatus.SUBMIT)
            self._compare_and_set(
                opname.id,
                OpnameStatus.DRAFT,
                status=OpnameStatus.SUBMIT.value,
                submitted_at=local_now(),
                submitted_by=actor_id,
            )
            # dihitung setelah baris sesi terkunci agar tidak balapan dengan hapus item
            item_count = (
                db.session.query(func.count(StockOpnameItem.id))
                .filter(StockOpnameItem.session_id == opname.id)
                .scalar()
            )
            if not item_count:
                raise ValidationError("Tambahkan minimal satu produk sebelum mengirim stock opname.")
        logging.info("Stock opname %s dikirim oleh user %s", opname.code, actor_id)
        return opname

    def approve(self, session_id, reviewer_id):
        with self.unit_of_work("menyetujui"):
            opname = self._load(session_id, lock=True)
            ensure_transition(opname.status, OpnameStatus.APPROVED)
            now = local_now()
            self._compare_and_set(
                opname.id,
                OpnameStatus.SUBMIT,
                status=OpnameStatus.APPROVED.value,
                approved_at=now,
                approved_by=reviewer_id,
            )
            applied = 0
            for item in opname.items:
                difference = item.difference
                self.inventory.apply_delta(item.product_id, difference)
                if difference:
                    db.session.add(
                        StockMovement(
                            product_id=item.product_id,
                            branch_id=opname.branch_id,
                            ref_type=MOVEMENT_REF_TYPE,
                            ref_id=opname.id,
                            qty_change=difference,
                            created_by=reviewer_id,
                            created_at=now,
                        )
                    )
                    applied += 1
        logging.info(
            "Stock opname %s disetujui oleh user %s (%s penyesuaian stok)",
            opname.code,
            reviewer_id,
            applied,
        )
        return opname

    def reject(self, session_id, reviewer_id, admin_notes):
        admin_notes = _clean_text(admin_notes)
        if not admin_notes:
            raise ValidationError("Alasan penolakan harus diisi.")
        with self.unit_of_work("menolak"):
            opname = self._load(session_id, lock=True)
            ensure_transition(opname.status, OpnameStatus.REJECTED)
            self._compare_and_set(
                opname.id,
                OpnameStatus.SUBMIT,
                status=OpnameStatus.REJECTED.value,
                rejected_at=local_now(),
                rejected_by=reviewer_id,
                admin_notes=admin_notes,
            )
        logging.info("Stock opname %s ditolak oleh user %s", opname.code, reviewer_id)
        return opname

    def discard(self, session_id, actor_id):
        with self.unit_of_work("menghapus"):
            opname = self._load(session_id, lock=True)
            ensure_editable(opname.status)
            if opname.created_by != actor_id:
                raise ValidationError("Hanya pembuat stock opname yang bisa menghapus draft ini.")
            self._touch_draft(opname.id)
            code = opname.code
            db.session.delete(opname)
        logging.info("Draft stock opname %s dihapus oleh user %s", code, actor_id)
