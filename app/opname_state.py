from enum import Enum

from app.errors import ConcurrencyConflictError, StateError, ValidationError


class OpnameStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMIT = "SUBMIT"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    def __str__(self):
        return self.value


TERMINAL_STATUSES = frozenset({OpnameStatus.APPROVED, OpnameStatus.REJECTED})

# Satu-satunya tabel transisi yang sah.
TRANSITIONS = {
    OpnameStatus.DRAFT: frozenset({OpnameStatus.SUBMIT}),
    OpnameStatus.SUBMIT: frozenset({OpnameStatus.APPROVED, OpnameStatus.REJECTED}),
    OpnameStatus.APPROVED: frozenset(),
    OpnameStatus.REJECTED: frozenset(),
}


def parse_status(value):
    if isinstance(value, OpnameStatus):
        return value
    try:
        return OpnameStatus(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Status stock opname tidak dikenal: {value!r}.") from None


def is_terminal(status):
    return parse_status(status) in TERMINAL_STATUSES


def ensure_transition(current, target):
    """
    Validasi perpindahan status ``current`` -> ``target``.

    Status terminal berarti transisi lain sudah menang, jadi dilaporkan
    sebagai ConcurrencyConflictError; edge lain di luar tabel -> StateError.
    """
    current = parse_status(current)
    target = parse_status(target)
    if target in TRANSITIONS[current]:
        return target
    if current in TERMINAL_STATUSES:
        raise ConcurrencyConflictError(
            f"Stock opname sudah berstatus {current.value}, tidak bisa diubah ke {target.value}.",
            current=current.value,
            target=target.value,
        )
    raise StateError(
        f"Stock opname berstatus {current.value} tidak bisa diubah ke {target.value}.",
        current=current.value,
        target=target.value,
    )


def ensure_editable(current):
    """Item dan catatan hanya boleh diubah saat DRAFT."""
    current = parse_status(current)
    if current is OpnameStatus.DRAFT:
        return current
    raise StateError(
        f"Stock opname berstatus {current.value} tidak bisa diubah lagi.",
        current=current.value,
    )
