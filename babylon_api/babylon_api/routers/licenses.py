"""Billing history endpoints: a user's licenses and invoices, plus the admin overview."""

from __future__ import annotations

from typing import Annotated

from babylon_core.state.repository import InvoiceRepository, LicenseRepository
from fastapi import APIRouter, Query

from babylon_api.dependencies import AdminDep, SessionDep
from babylon_api.schemas import AdminLicenseResponse, InvoiceResponse, LicenseResponse

router = APIRouter(tags=["licenses"])

UserIdQuery = Annotated[str, Query(alias="userId", min_length=1)]


@router.get("/licenses", response_model=list[LicenseResponse])
async def list_licenses(user_id: UserIdQuery, session: SessionDep) -> list[LicenseResponse]:
    """Return the user's licenses, newest first."""
    rows = await LicenseRepository(session).list_for_user(user_id)
    return [LicenseResponse.model_validate(row) for row in rows]


@router.get("/invoices", response_model=list[InvoiceResponse])
async def list_invoices(user_id: UserIdQuery, session: SessionDep) -> list[InvoiceResponse]:
    """Return the user's invoices, newest first."""
    rows = await InvoiceRepository(session).list_for_user(user_id)
    return [InvoiceResponse.model_validate(row) for row in rows]


@router.get("/admin/licenses", response_model=list[AdminLicenseResponse], dependencies=[AdminDep])
async def list_all_licenses(session: SessionDep) -> list[AdminLicenseResponse]:
    """Return every license with its owner's name and email."""
    rows = await LicenseRepository(session).list_all_with_profiles()
    out: list[AdminLicenseResponse] = []
    for license_row, user_name, user_email in rows:
        item = AdminLicenseResponse.model_validate(license_row)
        out.append(item.model_copy(update={"user_name": user_name, "user_email": user_email}))
    return out
