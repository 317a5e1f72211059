from flask import Blueprint, jsonify, make_response, request

from app.auth import (
    INVENTORY_ROLES,
    REVIEWER_ROLES,
    branch_scope,
    get_current_user,
    login_required,
    roles_required,
)
from app.errors import StockOpnameError, ValidationError
from app.forms import (
    RejectStockOpnameForm,
    StockOpnameForm,
    StockOpnameImportForm,
    StockOpnameItemForm,
)
from app.opname_io import export_rows, import_rows, read_upload, render_export
from app.opname_query import build_filters, list_sessions, page_size_options, variance_report
from app.stock_opname import StockOpnameService
from app.time_utils import format_datetime

bp = Blueprint("stock_opname", __name__, url_prefix="/api")


@bp.errorhandler(StockOpnameError)
def _handle_stock_opname_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _form_error_response(form):
    messages = []
    for field_errors in form.errors.values():
        messages.extend(str(message) for message in field_errors)
    return (
        jsonify(
            {
                "success": False,
                "code": ValidationError.code,
                "message": " ".join(messages) or "Data tidak valid.",
                "errors": form.errors,
            }
        ),
        400,
    )


def _serialize_item(item):
    return {
        "id": item.id,
        "session_id": item.session_id,
        "product_id": item.product_id,
        "product_sku": item.product_sku,
        "product_name": item.product_name,
        "system_quantity": item.system_quantity,
        "counted_quantity": item.counted_quantity,
        "difference": item.difference,
        "notes": item.notes,
        "created_at": format_datetime(item.created_at),
    }


def _serialize_session(opname, include_items=False):
    totals = opname.totals
    payload = {
        "id": opname.id,
        "code": opname.code,
        "branch_id": opname.branch_id,
        "status": opname.status,
        "notes": opname.notes,
        "admin_notes": opname.admin_notes,
        "created_by": opname.created_by,
        "submitted_by": opname.submitted_by,
        "approved_by": opname.approved_by,
        "rejected_by": opname.rejected_by,
        "created_at": format_datetime(opname.created_at),
        "updated_at": format_datetime(opname.updated_at),
        "submitted_at": format_datetime(opname.submitted_at),
        "approved_at": format_datetime(opname.approved_at),
        "rejected_at": format_datetime(opname.rejected_at),
        "total_items": totals.total_items,
        "total_positive_adjustment": totals.total_positive_adjustment,
        "total_negative_adjustment": totals.total_negative_adjustment,
    }
    if include_items:
        payload["items"] = [_serialize_item(item) for item in opname.items]
    return payload


def _serialize_page(result):
    return {
        "data": [
            dict(
                summary._asdict(),
                created_at=format_datetime(summary.created_at),
                submitted_at=format_datetime(summary.submitted_at),
                approved_at=format_datetime(summary.approved_at),
                rejected_at=format_datetime(summary.rejected_at),
            )
            for summary in result.data
        ],
        "total": result.total,
        "page": result.page,
        "per_page": result.per_page,
        "last_page": result.last_page,
        "page_size_options": list(page_size_options()),
    }


def _scoped_session(service, session_id):
    return service.get_session(session_id, branch_id=branch_scope(get_current_user()))


@bp.route("/stock-opname", methods=["GET"])
@login_required
@roles_required(*INVENTORY_ROLES)
def list_stock_opname():
    filters = build_filters(request.args)
    scope = branch_scope(get_current_user())
    if scope is not None:
        filters["branch_id"] = scope
    return jsonify(_serialize_page(list_sessions(filters)))


@bp.route("/stock-opname", methods=["POST"])
@login_required
@roles_required(*INVENTORY_ROLES)
def create_stock_opname():
    form = StockOpnameForm()
    if not form.validate_on_submit():
        return _form_error_response(form)
    user = get_current_user()
    branch_id = branch_scope(user)
    if branch_id is None:
        branch_id = form.branch_id.data or user.branch_id
    if branch_id is None:
        raise ValidationError("Cabang wajib dipilih untuk stock opname.")
    opname = StockOpnameService().create_session(branch_id, user.id, form.notes.data)
    return jsonify(_serialize_session(opname, include_items=True)), 201


@bp.route("/stock-opname/<int:session_id>", methods=["GET"])
@login_required
@roles_required(*INVENTORY_ROLES)
def get_stock_opname(session_id):
    opname = _scoped_session(StockOpnameService(), session_id)
    return jsonify(_serialize_session(opname, include_items=True))


@bp.route("/stock-opname/<int:session_id>", methods=["PUT"])
@login_required
@roles_required(*INVENTORY_ROLES)
def update_stock_opname(session_id):
    form = StockOpnameForm()
    if not form.validate_on_submit():
        return _form_error_response(form)
    service = StockOpnameService()
    _scoped_session(service, session_id)
    opname = service.update_notes(session_id, form.notes.data)
    return jsonify(_serialize_session(opname, include_items=True))


@bp.route("/stock-opname/<int:session_id>", methods=["DELETE"])
@login_required
@roles_required(*INVENTORY_ROLES)
def discard_stock_opname(session_id):
    service = StockOpnameService()
    _scoped_session(service, session_id)
    service.discard(session_id, get_current_user().id)
    return jsonify({"success": True, "message": "Draft stock opname dihapus."})


@bp.route("/stock-opname/<int:session_id>/items", methods=["POST"])
@login_required
@roles_required(*INVENTORY_ROLES)
def add_stock_opname_item(session_id):
    form = StockOpnameItemForm()
    if not form.validate_on_submit():
        return _form_error_response(form)
    service = StockOpnameService()
    _scoped_session(service, session_id)
    item = service.add_item(
        session_id,
        form.product_id.data,
        form.counted_quantity.data,
        form.notes.data,
    )
    return jsonify(_serialize_item(item)), 201


@bp.route("/stock-opname/<int:session_id>/items/<int:item_id>", methods=["DELETE"])
@login_required
@roles_required(*INVENTORY_ROLES)
def remove_stock_opname_item(session_id, item_id):
    service = StockOpnameService()
    _scoped_session(service, session_id)
    service.remove_item(session_id, item_id)
    return jsonify({"success": True, "message": "Item dihapus."})


@bp.route("/stock-opname/<int:session_id>/submit", methods=["POST"])
@login_required
@roles_required(*INVENTORY_ROLES)
def submit_stock_opname(session_id):
    service = StockOpnameService()
    _scoped_session(service, session_id)
    opname = service.submit(session_id, get_current_user().id)
    return jsonify(_serialize_session(opname))


@bp.route("/stock-opname/<int:session_id>/approve", methods=["POST"])
@login_required
@roles_required(*REVIEWER_ROLES)
def approve_stock_opname(session_id):
    opname = StockOpnameService().approve(session_id, get_current_user().id)
    return jsonify(_serialize_session(opname))


@bp.route("/stock-opname/<int:session_id>/reject", methods=["POST"])
@login_required
@roles_required(*REVIEWER_ROLES)
def reject_stock_opname(session_id):
    form = RejectStockOpnameForm()
    if not form.validate_on_submit():
        return _form_error_response(form)
    opname = StockOpnameService().reject(
        session_id, get_current_user().id, form.admin_notes.data
    )
    return jsonify(_serialize_session(opname))


@bp.route("/stock-opname/<int:session_id>/import", methods=["POST"])
@login_required
@roles_required(*INVENTORY_ROLES)
def import_stock_opname(session_id):
    form = StockOpnameImportForm()
    if not form.validate_on_submit():
        return _form_error_response(form)
    service = StockOpnameService()
    _scoped_session(service, session_id)
    upload = form.file.data
    rows = read_upload(upload.filename, upload.stream)
    result = import_rows(session_id, rows, service=service)
    payload = result.to_dict()
    payload["success"] = True
    return jsonify(payload)


@bp.route("/stock-opname/<int:session_id>/export", methods=["GET"])
@login_required
@roles_required(*INVENTORY_ROLES)
def export_stock_opname(session_id):
    opname = _scoped_session(StockOpnameService(), session_id)
    content, mimetype, extension = render_export(
        export_rows(opname.id), request.args.get("format", "csv")
    )
    response = make_response(content)
    response.headers["Content-Disposition"] = f"attachment; filename={opname.code}.{extension}"
    response.headers["Content-Type"] = mimetype
    return response


@bp.route("/admin/stock-opname", methods=["GET"])
@login_required
@roles_required(*REVIEWER_ROLES)
def review_stock_opname():
    return jsonify(_serialize_page(list_sessions(build_filters(request.args))))


@bp.route("/admin/stock-opname/report", methods=["GET"])
@login_required
@roles_required(*REVIEWER_ROLES)
def stock_opname_report():
    return jsonify(
        variance_report(
            request.args.get("branch_id"),
            request.args.get("start_date"),
            request.args.get("end_date"),
        )
    )
