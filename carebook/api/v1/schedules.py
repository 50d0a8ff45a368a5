from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ...api.deps import get_clock, get_current_actor, get_doctor_actor
from ...core.clock import Clock
from ...core.database import get_db
from ...core.exceptions import ValidationError
from ...core.security import Actor
from ...schemas.schedule import (
    AvailableSlotsResponse, BlockTimeRequest, ScheduleCreateRequest,
    ScheduleCreateResponse, ScheduleSlotResponse, ScheduleUpdateRequest,
    WeeklyScheduleResponse,
)
from ...services.availability_service import AvailabilityResolver
from ...services.schedule_service import ScheduleGenerator, ScheduleService

router = APIRouter(prefix="/schedules", tags=["Schedules"])

def _doctor_for(actor: Actor, doctor_id: Optional[int]) -> int:
    """Doctors default to their own schedule; admins must name one."""
    if doctor_id is not None:
        return doctor_id
    if actor.is_admin:
        raise ValidationError("doctor_id is required")
    return actor.id

@router.get("/available-slots", response_model=AvailableSlotsResponse)
def get_available_slots(
    doctor_id: int = Query(..., gt=0),
    date: date = Query(...),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Live bookable time slots for a doctor on a date."""
    resolver = AvailabilityResolver(db, clock=clock)
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        date=date,
        available_slots=resolver.resolve(doctor_id, date),
    )

@router.post("", response_model=ScheduleCreateResponse, status_code=status.HTTP_201_CREATED)
def create_schedule(
    request: ScheduleCreateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Open dates and time slots for booking."""
    slots = ScheduleGenerator(db, clock=clock).generate(request, actor)
    return ScheduleCreateResponse(
        created=len(slots),
        slots=[ScheduleSlotResponse.model_validate(slot) for slot in slots],
    )

@router.get("", response_model=List[ScheduleSlotResponse])
def list_schedules(
    doctor_id: int = Query(..., gt=0),
    date: Optional[date] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    is_available: Optional[bool] = None,
    include_past: bool = False,
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
):
    """A doctor's schedule slots, today onward unless a date range is given."""
    return ScheduleService(db, clock=clock).list_slots(
        doctor_id,
        on=date,
        start_date=start_date,
        end_date=end_date,
        is_available=is_available,
        include_past=include_past,
    )

@router.get("/daily", response_model=List[ScheduleSlotResponse])
def get_daily_schedule(
    date: Optional[date] = None,
    doctor_id: Optional[int] = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """All of a doctor's slots on one day, open and blocked."""
    day = date or clock().date()
    return ScheduleService(db, clock=clock).daily(_doctor_for(actor, doctor_id), day)

@router.get("/weekly", response_model=WeeklyScheduleResponse)
def get_weekly_schedule(
    date: Optional[date] = None,
    doctor_id: Optional[int] = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """A doctor's slots for the Monday-start week containing ``date``."""
    day = date or clock().date()
    return ScheduleService(db, clock=clock).weekly(_doctor_for(actor, doctor_id), day)

@router.post("/block", response_model=ScheduleSlotResponse, status_code=status.HTTP_201_CREATED)
def block_time(
    request: BlockTimeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Block off one time slot."""
    return ScheduleService(db, clock=clock).block_time(
        _doctor_for(actor, request.doctor_id),
        request.date,
        request.time_slot,
        actor,
        reason=request.reason,
    )

@router.patch("/{schedule_id}", response_model=ScheduleSlotResponse)
def update_schedule(
    schedule_id: int,
    request: ScheduleUpdateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Block, unblock or move a schedule slot."""
    return ScheduleService(db, clock=clock).update_slot(
        schedule_id,
        actor,
        is_available=request.is_available,
        time_slot=request.time_slot,
        notes=request.notes,
    )

@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Remove a schedule slot. Appointments already booked on it stay."""
    ScheduleService(db, clock=clock).delete(schedule_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
