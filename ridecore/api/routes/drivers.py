"""
Driver endpoints
================

GET   /api/v1/drivers/{driver_id}              -- current status and position
PATCH /api/v1/drivers/{driver_id}/availability -- go online / offline
PATCH /api/v1/drivers/{driver_id}/location     -- periodic position report
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.api.dependencies import get_db, get_settings
from ridecore.api.middleware import limiter
from ridecore.api.schemas import (
    DriverAvailabilityRequest,
    DriverLocationRequest,
    DriverResponse,
)
from ridecore.config import Settings
from ridecore.domain.enums import DriverStatus
from ridecore.domain.matching import location_cell
from ridecore.infrastructure.database import utcnow
from ridecore.infrastructure.repositories import DriverRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["drivers"])


async def _get_driver_or_404(repo: DriverRepository, driver_id: int):
    driver = await repo.get_by_id(driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.get("/{driver_id}", response_model=DriverResponse, summary="Get a driver")
@limiter.limit("100/minute")
async def get_driver(
    request: Request,
    driver_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await _get_driver_or_404(DriverRepository(db), driver_id)


@router.patch(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Toggle driver availability",
    description="A driver on a ride cannot change availability until it completes.",
)
@limiter.limit("100/minute")
async def set_availability(
    request: Request,
    driver_id: int,
    body: DriverAvailabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = DriverRepository(db)
    driver = await _get_driver_or_404(repo, driver_id)

    target = DriverStatus.AVAILABLE if body.available else DriverStatus.UNAVAILABLE
    source = DriverStatus.UNAVAILABLE if body.available else DriverStatus.AVAILABLE
    changed = await repo.set_status(driver_id, source, target)
    await db.refresh(driver)

    if not changed and DriverStatus(driver.status) != target:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot change availability while {DriverStatus(driver.status).value}",
        )
    if changed:
        logger.info("Driver %d is now %s", driver_id, target.value)
    return driver


@router.patch(
    "/{driver_id}/location",
    response_model=DriverResponse,
    summary="Report driver position",
)
@limiter.limit("100/minute")
async def update_location(
    request: Request,
    driver_id: int,
    body: DriverLocationRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    repo = DriverRepository(db)
    driver = await _get_driver_or_404(repo, driver_id)

    cell = location_cell(body.lat, body.lng, settings.h3_resolution)
    await repo.update_location(driver_id, body.lat, body.lng, cell, utcnow())
    await db.refresh(driver)
    return driver
