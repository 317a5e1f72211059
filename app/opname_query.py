import math
from collections import defaultdict, namedtuple

from flask import current_app
from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import joinedload

from app import db
from app.config_db import DEFAULT_PAGE_SIZE_OPTIONS
from app.errors import ValidationError
from app.models import StockOpnameItem, StockOpnameSession
from app.opname_state import OpnameStatus, parse_status
from app.time_utils import day_bounds, local_today, parse_date

ALL = "all"

SessionSummary = namedtuple(
    "SessionSummary",
    [
        "id",
        "code",
        "branch_id",
        "status",
        "notes",
        "admin_notes",
        "created_by",
        "created_at",
        "submitted_at",
        "approved_at",
        "rejected_at",
        "total_items",
        "total_positive_adjustment",
        "total_negative_adjustment",
    ],
)

PaginatedResult = namedtuple(
    "PaginatedResult", ["data", "total", "page", "per_page", "last_page"]
)


def page_size_options():
    options = current_app.config.get("OPNAME_PAGE_SIZE_OPTIONS") or DEFAULT_PAGE_SIZE_OPTIONS
    return tuple(sorted(options))


def clamp_per_page(value, options=None):
    """
    Ukuran halaman di luar daftar yang diizinkan dibulatkan ke atas ke opsi
    terdekat; di atas opsi terbesar dipotong ke opsi terbesar.
    """
    options = tuple(sorted(options or page_size_options()))
    try:
        value = int(value)
    except (TypeError, ValueError):
        default = current_app.config.get("OPNAME_DEFAULT_PAGE_SIZE", options[0])
        return default if default in options else options[0]
    if value in options:
        return value
    if value > options[-1]:
        return options[-1]
    return next(size for size in options if size >= value)


def _parse_page(value):
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1


def _parse_branch(value):
    if value in (None, "", ALL):
        return ALL
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Cabang tidak valid: {value!r}.") from None


def _parse_status_filter(value):
    if value in (None, "") or str(value).lower() == ALL:
        return ALL
    return parse_status(value)


def build_filters(args):
    """Ubah query string request menjadi filter untuk list_sessions."""
    return {
        "status": _parse_status_filter(args.get("status")),
        "branch_id": _parse_branch(args.get("branch_id")),
        "search": (args.get("search") or "").strip(),
        "date_from": parse_date(args.get("date_from") or args.get("start_date")),
        "date_to": parse_date(args.get("date_to") or args.get("end_date")),
        "page": _parse_page(args.get("page")),
        "per_page": clamp_per_page(args.get("per_page")),
    }


def _escape_like(value):
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _totals_subquery():
    difference = StockOpnameItem.counted_quantity - StockOpnameItem.system_quantity
    return (
        db.session.query(
            StockOpnameItem.session_id.label("session_id"),
            func.count(StockOpnameItem.id).label("total_items"),
            func.sum(case((difference > 0, difference), else_=0)).label("plus"),
            func.sum(case((difference < 0, -difference), else_=0)).label("minus"),
        )
        .group_by(StockOpnameItem.session_id)
        .subquery()
    )


def _session_conditions(filters):
    conditions = []
    status = _parse_status_filter(filters.get("status"))
    if status != ALL:
        conditions.append(StockOpnameSession.status == status.value)

    branch_id = _parse_branch(filters.get("branch_id"))
    if branch_id != ALL:
        conditions.append(StockOpnameSession.branch_id == branch_id)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{_escape_like(search)}%"
        conditions.append(
            or_(
                StockOpnameSession.code.ilike(like, escape="\\"),
                StockOpnameSession.notes.ilike(like, escape="\\"),
            )
        )

    start, end = day_bounds(parse_date(filters.get("date_from")), parse_date(filters.get("date_to")))
    if start:
        conditions.append(StockOpnameSession.created_at >= start)
    if end:
        conditions.append(StockOpnameSession.created_at <= end)
    return conditions


def list_sessions(filters):
    """
    Daftar sesi stock opname terbaru lebih dulu, dengan total item dan
    penyesuaian yang dihitung dari item saat query dijalankan.

    ``filters['branch_id']`` dihormati apa adanya; pembatasan cabang sesuai
    hak akses pengguna dilakukan oleh pemanggil.
    """
    conditions = _session_conditions(filters)
    per_page = clamp_per_page(filters.get("per_page"))
    page = _parse_page(filters.get("page"))

    total = (
        db.session.query(func.count(StockOpnameSession.id)).filter(*conditions).scalar()
        or 0
    )
    last_page = max(1, math.ceil(total / per_page))
    if page > last_page:
        page = last_page

    totals = _totals_subquery()
    records = (
        db.session.query(
            StockOpnameSession,
            totals.c.total_items,
            totals.c.plus,
            totals.c.minus,
        )
        .outerjoin(totals, totals.c.session_id == StockOpnameSession.id)
        .filter(*conditions)
        .order_by(StockOpnameSession.created_at.desc(), StockOpnameSession.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    data = [
        SessionSummary(
            id=opname.id,
            code=opname.code,
            branch_id=opname.branch_id,
            status=opname.status,
            notes=opname.notes,
            admin_notes=opname.admin_notes,
            created_by=opname.created_by,
            created_at=opname.created_at,
            submitted_at=opname.submitted_at,
            approved_at=opname.approved_at,
            rejected_at=opname.rejected_at,
            total_items=int(total_items or 0),
            total_positive_adjustment=int(plus or 0),
            total_negative_adjustment=int(minus or 0),
        )
        for opname, total_items, plus, minus in records
    ]
    return PaginatedResult(data=data, total=total, page=page, per_page=per_page, last_page=last_page)


def variance_report(branch_id=ALL, start_date=None, end_date=None):
    """
    Ringkasan selisih stok dari sesi APPROVED dalam rentang tanggal approve.
    Default rentang: awal bulan berjalan s/d hari ini. Jika hanya satu batas
    diisi, batas lain dilengkapi tanpa membuang yang diisi.
    """
    today = local_today()
    start_date = parse_date(start_date)
    end_date = parse_date(end_date)
    if not start_date and not end_date:
        end_date = today
        start_date = today.replace(day=1)
    elif not end_date:
        end_date = today
    elif not start_date:
        start_date = end_date.replace(day=1)
    if end_date < start_date:
        start_date, end_date = end_date, start_date
    start, end = day_bounds(start_date, end_date)

    query = StockOpnameSession.query.options(joinedload(StockOpnameSession.items)).filter(
        and_(
            StockOpnameSession.status == OpnameStatus.APPROVED.value,
            StockOpnameSession.approved_at >= start,
            StockOpnameSession.approved_at <= end,
        )
    )
    branch_id = _parse_branch(branch_id)
    if branch_id != ALL:
        query = query.filter(StockOpnameSession.branch_id == branch_id)
    sessions = query.order_by(StockOpnameSession.approved_at.desc()).all()

    totals = {"sessions": len(sessions), "items": 0, "over": 0, "short": 0}
    daily_map = defaultdict(lambda: {"count": 0, "over": 0, "short": 0})
    product_variances = defaultdict(lambda: {"name": "", "sku": None, "diff": 0})

    for opname in sessions:
        session_date = opname.approved_at.date()
        totals["items"] += len(opname.items)
        for item in opname.items:
            difference = item.difference
            if difference > 0:
                totals["over"] += difference
                daily_map[session_date]["over"] += difference
            elif difference < 0:
                totals["short"] += -difference
                daily_map[session_date]["short"] += -difference
            entry = product_variances[item.product_id or item.product_sku]
            entry["name"] = entry["name"] or item.product_name
            entry["sku"] = entry["sku"] or item.product_sku
            entry["diff"] += difference
        daily_map[session_date]["count"] += 1

    daily_points = [
        {
            "date": day.isoformat(),
            "sessions": values["count"],
            "over": values["over"],
            "short": values["short"],
        }
        for day, values in sorted(daily_map.items())
    ]
    top_variances = sorted(
        product_variances.values(), key=lambda entry: abs(entry["diff"]), reverse=True
    )[:5]

    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "totals": totals,
        "daily_points": daily_points,
        "top_variances": top_variances,
    }
