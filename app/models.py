from collections import namedtuple
from datetime import datetime

from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import validates

from app import db
from app.errors import ValidationError
from app.opname_state import OpnameStatus


OpnameTotals = namedtuple(
    "OpnameTotals",
    ["total_items", "total_positive_adjustment", "total_negative_adjustment"],
)


def compute_totals(items):
    """
    Agregat sesi dihitung ulang dari daftar item, tidak pernah disimpan.
    Selisih nol tetap dihitung sebagai item tapi tidak masuk total +/-.
    """
    total_items = 0
    plus = 0
    minus = 0
    for item in items:
        total_items += 1
        difference = item.difference
        if difference > 0:
            plus += difference
        elif difference < 0:
            minus += -difference
    return OpnameTotals(total_items, plus, minus)


class Branch(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    address = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Branch {self.name}>"


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(50), nullable=False, default='gudang')
    branch_id = db.Column(db.Integer, db.ForeignKey('branch.id', ondelete='SET NULL'), nullable=True)

    branch = db.relationship('Branch', backref=db.backref('users', lazy=True))

    def __repr__(self):
        return f'<User {self.username}>'


class Produk(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branch.id', ondelete='CASCADE'), nullable=False, index=True)
    kode_produk = db.Column(db.String(50), nullable=False, index=True)
    sku = db.Column(db.String(50), nullable=True)
    nama_produk = db.Column(db.String(100), nullable=False)
    stok = db.Column(db.Integer, default=0, nullable=False)

    branch = db.relationship('Branch', backref=db.backref('produk', lazy=True))

    __table_args__ = (
        db.UniqueConstraint('branch_id', 'kode_produk', name='uq_produk_branch_kode'),
        db.UniqueConstraint('branch_id', 'sku', name='uq_produk_branch_sku'),
    )

    def __repr__(self):
        return f"<Produk {self.nama_produk}>"


class StockOpnameSession(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey('branch.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=OpnameStatus.DRAFT.value, index=True)
    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    submitted_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    rejected_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    submitted_at = db.Column(db.DateTime, nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)

    branch = db.relationship('Branch', backref=db.backref('stock_opname_sessions', lazy=True))
    creator = db.relationship(
        'User',
        foreign_keys=[created_by],
        backref=db.backref('stock_opname_sessions', lazy=True),
    )

    @validates('code')
    def _validate_code(self, key, value):
        if self.code is not None and value != self.code:
            raise ValidationError("Kode stock opname tidak boleh diubah.")
        return value

    @property
    def status_enum(self):
        return OpnameStatus(self.status)

    @property
    def totals(self):
        return compute_totals(self.items)

    @property
    def total_items(self):
        return self.totals.total_items

    @property
    def total_positive_adjustment(self):
        return self.totals.total_positive_adjustment

    @property
    def total_negative_adjustment(self):
        return self.totals.total_negative_adjustment

    def __repr__(self):
        return f"<StockOpnameSession {self.code} ({self.status})>"


class StockOpnameItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('stock_opname_session.id', ondelete='CASCADE'), nullable=False)
    # produk boleh hilang setelah item dibuat; nama dan SKU tetap tersimpan
    product_id = db.Column(db.Integer, db.ForeignKey('produk.id', ondelete='SET NULL'), nullable=True)
    product_sku = db.Column(db.String(50), nullable=True)
    product_name = db.Column(db.String(100), nullable=False)
    system_quantity = db.Column(db.Integer, nullable=False, default=0)
    counted_quantity = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    session = db.relationship(
        'StockOpnameSession',
        backref=db.backref(
            'items',
            lazy=True,
            cascade='all, delete-orphan',
            order_by='StockOpnameItem.id',
        ),
    )
    product = db.relationship('Produk')

    __table_args__ = (
        db.UniqueConstraint('session_id', 'product_id', name='uq_opname_item_product'),
    )

    @hybrid_property
    def difference(self):
        return (self.counted_quantity or 0) - (self.system_quantity or 0)

    @difference.expression
    def difference(cls):
        return cls.counted_quantity - cls.system_quantity

    def __repr__(self):
        return f"<StockOpnameItem {self.product_name} {self.difference:+d}>"


class StockMovement(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('produk.id', ondelete='SET NULL'), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey('branch.id'), nullable=False)
    ref_type = db.Column(db.String(30), nullable=False)  # STOCK_OPNAME
    ref_id = db.Column(db.Integer, nullable=False)
    qty_change = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship('Produk')

    __table_args__ = (
        db.Index('ix_stock_movement_ref', 'ref_type', 'ref_id'),
    )

    def __repr__(self):
        return f"<StockMovement {self.ref_type}#{self.ref_id} {self.qty_change:+d}>"
