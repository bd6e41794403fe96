"""License lifecycle: plan types, status state machines, and expiration rules."""

from babylon_core.licensing.lifecycle import (
    BillingCycle,
    InvalidTransitionError,
    InvoiceStatus,
    LicenseStatus,
    PlanType,
    billing_cycle_for,
    compute_expiration,
    transition_invoice,
    transition_license,
)

__all__ = [
    "BillingCycle",
    "InvalidTransitionError",
    "InvoiceStatus",
    "LicenseStatus",
    "PlanType",
    "billing_cycle_for",
    "compute_expiration",
    "transition_invoice",
    "transition_license",
]
