"""Plan catalog endpoints.

Listing is public so the pricing page can render without a session; every
write requires the admin token.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from babylon_core.state.repository import LicensePlanRepository
from fastapi import APIRouter

from babylon_api.dependencies import AdminDep, SessionDep
from babylon_api.errors import NotFoundError
from babylon_api.schemas import PlanCreate, PlanResponse, PlanUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=list[PlanResponse])
async def list_plans(session: SessionDep) -> list[PlanResponse]:
    """Return the plan catalog, cheapest first."""
    rows = await LicensePlanRepository(session).list_all()
    return [PlanResponse.model_validate(row) for row in rows]


@router.post("", response_model=PlanResponse, status_code=201, dependencies=[AdminDep])
async def create_plan(body: PlanCreate, session: SessionDep) -> PlanResponse:
    """Add a plan to the catalog."""
    row = await LicensePlanRepository(session).create(
        name=body.name,
        plan_type=body.type.value,
        price=Decimal(str(body.price)),
        description=body.description,
    )
    logger.info("Created plan %s (%s, %s)", row.id, row.type, row.price)
    return PlanResponse.model_validate(row)


@router.put("/{plan_id}", response_model=PlanResponse, dependencies=[AdminDep])
async def update_plan(plan_id: str, body: PlanUpdate, session: SessionDep) -> PlanResponse:
    """Update an existing plan; omitted fields are left unchanged."""
    row = await LicensePlanRepository(session).update(
        plan_id,
        name=body.name,
        plan_type=body.type.value if body.type is not None else None,
        price=Decimal(str(body.price)) if body.price is not None else None,
        description=body.description,
    )
    if row is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    logger.info("Updated plan %s", plan_id)
    return PlanResponse.model_validate(row)


@router.delete("/{plan_id}", dependencies=[AdminDep])
async def delete_plan(plan_id: str, session: SessionDep) -> dict[str, bool]:
    """Remove a plan.  Existing licenses keep their copied name and value."""
    if not await LicensePlanRepository(session).delete(plan_id):
        raise NotFoundError(f"Plan {plan_id} not found")
    logger.info("Deleted plan %s", plan_id)
    return {"success": True}
