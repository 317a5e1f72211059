# tests/conftest.py
import os
from types import SimpleNamespace

import pytest
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from werkzeug.security import generate_password_hash

# --- Paksa environment test yang aman ---
os.environ.setdefault("FLASK_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test")
# Gunakan SQLite in-memory agar tidak butuh MySQL saat CI
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

# Kosongkan env MYSQL_* supaya kode tidak memaksa DSN MySQL
for k in ("MYSQL_HOST", "MYSQL_PORT", "MYSQL_USER", "MYSQL_PASSWORD", "MYSQL_DATABASE"):
    os.environ.setdefault(k, "")

from app import create_app, db  # noqa: E402
from app.models import Branch, Produk, User  # noqa: E402

TEST_CONFIG = {
    "TESTING": True,
    "WTF_CSRF_ENABLED": False,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_ENGINE_OPTIONS": {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    },
}


def _seed():
    """Dua cabang, user per peran, dan produk dengan stok awal yang diketahui."""
    branch_a = Branch(name="Gudang Pusat", address="Jl. Merdeka 1")
    branch_b = Branch(name="Cabang Timur")
    db.session.add_all([branch_a, branch_b])
    db.session.flush()

    password = generate_password_hash("rahasia")
    admin = User(username="admin", email="admin@example.com", password=password, role="admin")
    gudang_a = User(
        username="gudang_a",
        email="gudang_a@example.com",
        password=password,
        role="gudang",
        branch_id=branch_a.id,
    )
    gudang_a2 = User(
        username="gudang_a2",
        email="gudang_a2@example.com",
        password=password,
        role="gudang",
        branch_id=branch_a.id,
    )
    gudang_b = User(
        username="gudang_b",
        email="gudang_b@example.com",
        password=password,
        role="gudang",
        branch_id=branch_b.id,
    )
    tanpa_cabang = User(
        username="gudang_x", email="gudang_x@example.com", password=password, role="gudang"
    )
    kasir = User(
        username="kasir_a",
        email="kasir_a@example.com",
        password=password,
        role="kasir",
        branch_id=branch_a.id,
    )

    beras = Produk(branch_id=branch_a.id, kode_produk="BRS-5", sku="SKU-001", nama_produk="Beras 5kg", stok=10)
    gula = Produk(branch_id=branch_a.id, kode_produk="GLA-1", sku="SKU-002", nama_produk="Gula 1kg", stok=5)
    minyak = Produk(branch_id=branch_a.id, kode_produk="MYK-2", sku=None, nama_produk="Minyak 2L", stok=0)
    beras_b = Produk(branch_id=branch_b.id, kode_produk="BRS-5", sku="SKU-001", nama_produk="Beras 5kg", stok=7)

    db.session.add_all([admin, gudang_a, gudang_a2, gudang_b, tanpa_cabang, kasir, beras, gula, minyak, beras_b])
    db.session.commit()

    return SimpleNamespace(
        branch_a=branch_a.id,
        branch_b=branch_b.id,
        admin=admin.id,
        gudang_a=gudang_a.id,
        gudang_a2=gudang_a2.id,
        gudang_b=gudang_b.id,
        tanpa_cabang=tanpa_cabang.id,
        kasir=kasir.id,
        beras=beras.id,
        gula=gula.id,
        minyak=minyak.id,
        beras_b=beras_b.id,
    )


@pytest.fixture()
def app():
    # App baru per test: engine StaticPool baru = database in-memory kosong
    _app = create_app(TEST_CONFIG)
    with _app.app_context():
        db.create_all()
    yield _app
    with _app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def seed(app):
    with app.app_context():
        return _seed()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def runner(app):
    return app.test_cli_runner()


@pytest.fixture()
def login(client):
    def _login(user_id):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
        return client

    return _login


@pytest.fixture()
def file_app(tmp_path):
    """
    App dengan SQLite berbasis file dan transaksi BEGIN IMMEDIATE, supaya
    dua thread benar-benar saling menunggu seperti pada MySQL/PostgreSQL.
    """
    config = dict(TEST_CONFIG)
    config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'opname.db'}"
    config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "connect_args": {"check_same_thread": False, "timeout": 30},
    }
    _app = create_app(config)
    with _app.app_context():
        engine = db.engine

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        db.create_all()
        _app.config["SEED"] = _seed()
    yield _app
    with _app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
