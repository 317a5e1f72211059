from functools import wraps

from flask import g, jsonify, session

from app import db
from app.models import User

ROLE_ADMIN = "admin"
ROLE_KASIR = "kasir"
ROLE_SALES = "sales"
ROLE_GUDANG = "gudang"
ALL_ROLES = {ROLE_ADMIN, ROLE_KASIR, ROLE_SALES, ROLE_GUDANG}
INVENTORY_ROLES = (ROLE_ADMIN, ROLE_GUDANG)
REVIEWER_ROLES = (ROLE_ADMIN,)


def _auth_required_response():
    return jsonify({"success": False, "message": "Authentication required"}), 401


def _forbidden_response(allowed_roles):
    return (
        jsonify(
            {
                "success": False,
                "message": "Forbidden",
                "allowed_roles": sorted(r for r in allowed_roles),
            }
        ),
        403,
    )


def get_current_user():
    if hasattr(g, "_current_user"):
        return g._current_user

    user = None
    user_id = session.get("user_id")
    if user_id:
        user = db.session.get(User, user_id)
        if user:
            session["username"] = user.username
            session["role"] = user.role

    if not user:
        session.pop("user_id", None)
        session.pop("username", None)
        session.pop("role", None)

    g._current_user = user
    return user


def is_reviewer(user):
    return bool(user) and (user.role or "").lower() in REVIEWER_ROLES


def branch_scope(user):
    """
    Cabang yang boleh diakses user. None berarti lintas cabang (admin tanpa
    cabang tetap); selain admin selalu terkunci ke cabangnya sendiri.
    """
    if is_reviewer(user):
        return None
    return user.branch_id


def login_required(view_func):
    @wraps(view_func)
    def wrapped_view(*args, **kwargs):
        if not get_current_user():
            return _auth_required_response()
        return view_func(*args, **kwargs)

    return wrapped_view


def roles_required(*allowed_roles, allow_admin=True):
    allowed_set = {role.lower() for role in allowed_roles if role}

    def decorator(view_func):
        @wraps(view_func)
        def wrapped_view(*args, **kwargs):
            user = get_current_user()
            if not user:
                return _auth_required_response()

            user_role = (user.role or "").lower()
            if allow_admin and user_role == ROLE_ADMIN:
                return view_func(*args, **kwargs)

            if allowed_set and user_role in allowed_set:
                if user.branch_id is None:
                    return (
                        jsonify(
                            {
                                "success": False,
                                "message": "Akun belum terhubung ke cabang.",
                            }
                        ),
                        403,
                    )
                return view_func(*args, **kwargs)

            return _forbidden_response(allowed_set or ALL_ROLES)

        return wrapped_view

    return decorator
