"""License and invoice lifecycle rules.

Statuses are stored as plain strings in the state store; this module is the
single place that decides which status changes are legal.  Two state
machines exist:

* **License** -- ``Pendente`` -> ``Ativa`` -> ``Expirada`` (a pending
  license may also be expired directly when superseded before payment).
  A confirmed payment may also move an ``Expirada`` license back to
  ``Ativa``; it then replaces whatever license was active.
* **Invoice** -- ``Pendente`` -> ``Pago``.  ``Pago`` is terminal.

It also owns the mapping from a catalog plan type to the gateway billing
cycle and the expiration date granted on activation.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from enum import Enum


class PlanType(str, Enum):
    """Catalog plan period, as stored in ``license_plans.type``."""

    MONTHLY = "Mensal"
    YEARLY = "Anual"
    LIFETIME = "Vitalícia"


class LicenseStatus(str, Enum):
    """Entitlement state of a single license."""

    PENDING = "Pendente"
    ACTIVE = "Ativa"
    EXPIRED = "Expirada"


class InvoiceStatus(str, Enum):
    """Settlement state of a single invoice."""

    PENDING = "Pendente"
    PAID = "Pago"


class BillingCycle(str, Enum):
    """Recurring cycle understood by the payment gateway."""

    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} transition: {current!r} -> {target!r}")


_LICENSE_TRANSITIONS: dict[LicenseStatus, frozenset[LicenseStatus]] = {
    LicenseStatus.PENDING: frozenset({LicenseStatus.ACTIVE, LicenseStatus.EXPIRED}),
    LicenseStatus.ACTIVE: frozenset({LicenseStatus.EXPIRED}),
    LicenseStatus.EXPIRED: frozenset(),
}

# Extra moves allowed only when the change is driven by a confirmed payment.
_PAID_LICENSE_TRANSITIONS: dict[LicenseStatus, frozenset[LicenseStatus]] = {
    LicenseStatus.EXPIRED: frozenset({LicenseStatus.ACTIVE}),
}

_INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.PAID: frozenset(),
}

# Lifetime plans are billed on a monthly cycle; cancellation is handled
# manually on the gateway side.
_CYCLE_BY_PLAN_TYPE: dict[PlanType, BillingCycle] = {
    PlanType.MONTHLY: BillingCycle.MONTHLY,
    PlanType.YEARLY: BillingCycle.YEARLY,
    PlanType.LIFETIME: BillingCycle.MONTHLY,
}


def can_transition_license(
    current: LicenseStatus | str,
    target: LicenseStatus | str,
    *,
    paid: bool = False,
) -> bool:
    """Return ``True`` if a license may move from *current* to *target*.

    ``paid=True`` also admits the moves reserved for payment confirmation.
    """
    try:
        src = LicenseStatus(current)
        dst = LicenseStatus(target)
    except ValueError:
        return False
    if dst in _LICENSE_TRANSITIONS[src]:
        return True
    return paid and dst in _PAID_LICENSE_TRANSITIONS.get(src, frozenset())


def can_transition_invoice(current: InvoiceStatus | str, target: InvoiceStatus | str) -> bool:
    """Return ``True`` if an invoice may move from *current* to *target*."""
    try:
        src = InvoiceStatus(current)
        dst = InvoiceStatus(target)
    except ValueError:
        return False
    return dst in _INVOICE_TRANSITIONS[src]


def transition_license(
    current: LicenseStatus | str,
    target: LicenseStatus | str,
    *,
    paid: bool = False,
) -> LicenseStatus:
    """Validate a license status change and return the new status.

    Raises
    ------
    InvalidTransitionError
        If the change is not in the license transition table.
    """
    if not can_transition_license(current, target, paid=paid):
        raise InvalidTransitionError("license", str(_value(current)), str(_value(target)))
    return LicenseStatus(target)


def transition_invoice(current: InvoiceStatus | str, target: InvoiceStatus | str) -> InvoiceStatus:
    """Validate an invoice status change and return the new status.

    Raises
    ------
    InvalidTransitionError
        If the change is not in the invoice transition table.
    """
    if not can_transition_invoice(current, target):
        raise InvalidTransitionError("invoice", str(_value(current)), str(_value(target)))
    return InvoiceStatus(target)


def billing_cycle_for(plan_type: PlanType | str) -> BillingCycle:
    """Map a catalog plan type to the gateway billing cycle.

    Unknown plan types fall back to a monthly cycle.
    """
    try:
        return _CYCLE_BY_PLAN_TYPE[PlanType(plan_type)]
    except ValueError:
        return BillingCycle.MONTHLY


def add_months(value: date, months: int) -> date:
    """Add *months* calendar months, clamping to the last day of the month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_expiration(plan_type: PlanType | str, confirmed_at: datetime | date) -> date | None:
    """Return the expiration date granted when a license is activated.

    ``Anual`` licenses run one year from confirmation, lifetime licenses
    never expire, and everything else runs one calendar month.
    """
    start = confirmed_at.date() if isinstance(confirmed_at, datetime) else confirmed_at
    try:
        kind = PlanType(plan_type)
    except ValueError:
        kind = PlanType.MONTHLY

    if kind is PlanType.LIFETIME:
        return None
    if kind is PlanType.YEARLY:
        return add_months(start, 12)
    return add_months(start, 1)


def _value(status: Enum | str) -> str:
    return status.value if isinstance(status, Enum) else status
