from sqlalchemy import update

from app import db
from app.errors import NotFoundError
from app.models import Produk


class InventoryStore:
    """
    Kontrak stok yang dibutuhkan stock opname.

    ``apply_delta`` wajib atomik terhadap pemanggil lain (increment di sisi
    penyimpanan, bukan baca-ubah-tulis di sisi pemanggil).
    """

    def get_product(self, branch_id, product_id):
        raise NotImplementedError

    def find_by_sku(self, branch_id, sku):
        raise NotImplementedError

    def get_quantity(self, product_id):
        raise NotImplementedError

    def apply_delta(self, product_id, delta):
        raise NotImplementedError


class SqlInventoryStore(InventoryStore):
    """Stok disimpan di kolom ``produk.stok`` pada database yang sama."""

    def get_product(self, branch_id, product_id):
        produk = db.session.get(Produk, product_id) if product_id is not None else None
        if not produk or (branch_id is not None and produk.branch_id != branch_id):
            raise NotFoundError(
                f"Produk dengan ID {product_id} tidak ditemukan.",
                product_id=product_id,
            )
        return produk

    def find_by_sku(self, branch_id, sku):
        # sel Excel bisa berupa angka, bukan string
        if isinstance(sku, float) and sku.is_integer():
            sku = int(sku)
        sku = str(sku).strip() if sku is not None else ""
        produk = None
        if sku:
            produk = (
                Produk.query.filter_by(branch_id=branch_id, sku=sku).first()
                or Produk.query.filter_by(branch_id=branch_id, kode_produk=sku).first()
            )
        if not produk:
            raise NotFoundError(f"Produk dengan SKU {sku or '-'} tidak ditemukan.", sku=sku)
        return produk

    def get_quantity(self, product_id):
        quantity = db.session.execute(
            db.select(Produk.stok).where(Produk.id == product_id)
        ).scalar_one_or_none()
        if quantity is None:
            raise NotFoundError(
                f"Produk dengan ID {product_id} tidak ditemukan.",
                product_id=product_id,
            )
        return int(quantity)

    def apply_delta(self, product_id, delta):
        if product_id is None:
            raise NotFoundError("Produk sudah dihapus.", product_id=None)
        result = db.session.execute(
            update(Produk)
            .where(Produk.id == product_id)
            .values(stok=Produk.stok + int(delta))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(
                f"Produk dengan ID {product_id} tidak ditemukan.",
                product_id=product_id,
            )
        return True
