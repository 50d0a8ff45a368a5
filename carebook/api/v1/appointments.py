from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import (
    booking_rate_limit, get_admin_actor, get_clock, get_current_actor,
    get_doctor_actor, get_patient_actor
)
from ...core.clock import Clock
from ...core.database import get_db
from ...core.security import Actor
from ...schemas.appointment import (
    AppointmentListResponse, AppointmentResponse, BookRequest,
    CancelRequest, CompletionSweepResponse
)
from ...services.appointment_service import AppointmentService
from ...services.booking_service import BookingCoordinator
from ...services.cancellation_service import CancellationPolicy

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post(
    "/book",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limit)],
)
def book_appointment(
    request: BookRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_patient_actor),
    clock: Clock = Depends(get_clock),
):
    """Book a time slot. A slot taken in the meantime returns 409."""
    return BookingCoordinator(db, clock=clock).book(request, actor)

@router.get("/me", response_model=AppointmentListResponse)
def list_my_appointments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    doctor_id: Optional[int] = Query(default=None, gt=0),
    patient_id: Optional[int] = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
):
    """The caller's appointments split into upcoming and past."""
    return AppointmentService(db, clock=clock).list_for_actor(
        actor, status_filter, doctor_id=doctor_id, patient_id=patient_id
    )

@router.post("/complete-elapsed", response_model=CompletionSweepResponse)
def complete_elapsed_appointments(
    db: Session = Depends(get_db),
    _: Actor = Depends(get_admin_actor),
    clock: Clock = Depends(get_clock),
):
    """Complete every confirmed appointment whose slot has ended."""
    completed = CancellationPolicy(db, clock=clock).complete_elapsed()
    return CompletionSweepResponse(completed=completed)

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
):
    """Get one appointment."""
    return AppointmentService(db, clock=clock).get(appointment_id, actor)

@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    request: Optional[CancelRequest] = Body(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
):
    """Cancel an upcoming appointment; its slot becomes bookable again."""
    reason = request.reason if request else None
    return CancellationPolicy(db, clock=clock).cancel(appointment_id, actor, reason=reason)

@router.patch("/{appointment_id}/confirm", response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Doctor confirmation of a pending appointment."""
    return CancellationPolicy(db, clock=clock).confirm(appointment_id, actor)

@router.patch("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_doctor_actor),
    clock: Clock = Depends(get_clock),
):
    """Mark a confirmed appointment completed after its slot has ended."""
    return CancellationPolicy(db, clock=clock).complete(appointment_id, actor)
