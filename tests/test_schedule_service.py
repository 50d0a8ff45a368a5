from datetime import date, datetime

import pytest
from pydantic import ValidationError as RequestValidationError

from carebook.core.exceptions import (
    ConflictError, NotFoundError, PermissionDeniedError, PolicyError, ValidationError
)
from carebook.models.appointment import Appointment, AppointmentStatus
from carebook.models.schedule import ScheduleSlot
from carebook.schemas.schedule import ScheduleCreateRequest
from carebook.services.availability_service import AvailabilityResolver
from carebook.services.schedule_service import ScheduleGenerator, ScheduleService, expand_dates

from .conftest import ADMIN, DOCTOR_1, DOCTOR_2, FIXED_NOW


def _request(**overrides) -> ScheduleCreateRequest:
    data = {"doctor_id": 1, "dates": [date(2025, 12, 1)], "time_slots": ["09:00-10:00", "10:00-11:00"]}
    data.update(overrides)
    return ScheduleCreateRequest(**data)


class TestScheduleGenerator:

    def test_creates_one_open_slot_per_date_and_time_slot(self, seeded, clock):
        """Two slots on one date yield exactly two open rows."""
        rows = ScheduleGenerator(seeded, clock=clock).generate(_request(), DOCTOR_1)

        assert len(rows) == 2
        stored = seeded.query(ScheduleSlot).filter(ScheduleSlot.doctor_id == 1).all()
        assert len(stored) == 2
        assert all(slot.is_available for slot in stored)
        assert {slot.time_slot for slot in stored} == {"09:00-10:00", "10:00-11:00"}
        assert all(slot.day_of_week == 0 for slot in stored)  # 2025-12-01 is a Monday

    def test_slices_full_working_day_when_no_slots_given(self, seeded, clock):
        """Without slots or a range the doctor's whole working day is opened."""
        rows = ScheduleGenerator(seeded, clock=clock).generate(
            _request(doctor_id=2, time_slots=[]), DOCTOR_2
        )

        assert [row.time_slot for row in rows] == [
            "08:00-08:30", "08:30-09:00", "09:00-09:30", "09:30-10:00",
            "10:00-10:30", "10:30-11:00", "11:00-11:30", "11:30-12:00",
        ]

    def test_slices_requested_range(self, seeded, clock):
        rows = ScheduleGenerator(seeded, clock=clock).generate(
            _request(time_slots=[], start_time="13:00", end_time="16:00"), DOCTOR_1
        )

        assert [row.time_slot for row in rows] == ["13:00-14:00", "14:00-15:00", "15:00-16:00"]

    def test_repeat_weekly_expands_over_horizon(self, seeded, clock):
        rows = ScheduleGenerator(seeded, clock=clock).generate(
            _request(time_slots=["09:00-10:00"], repeat_weekly=True, weeks=4), DOCTOR_1
        )

        assert sorted(row.date for row in rows) == [
            date(2025, 12, 1), date(2025, 12, 8), date(2025, 12, 15), date(2025, 12, 22)
        ]

    def test_rejects_past_dates(self, seeded, clock):
        with pytest.raises(ValidationError) as exc_info:
            ScheduleGenerator(seeded, clock=clock).generate(
                _request(dates=[date(2025, 11, 19), date(2025, 12, 1)]), DOCTOR_1
            )

        assert exc_info.value.details == {"dates": ["2025-11-19"]}
        assert seeded.query(ScheduleSlot).count() == 0

    def test_today_is_not_a_past_date(self, seeded, clock):
        rows = ScheduleGenerator(seeded, clock=clock).generate(
            _request(dates=[FIXED_NOW.date()], time_slots=["16:00-17:00"]), DOCTOR_1
        )

        assert len(rows) == 1

    def test_rejects_slots_outside_working_hours(self, seeded, clock):
        with pytest.raises(ValidationError) as exc_info:
            ScheduleGenerator(seeded, clock=clock).generate(
                _request(time_slots=["08:00-09:00", "09:00-10:00"]), DOCTOR_1
            )

        assert exc_info.value.details == {"time_slots": ["08:00-09:00"]}
        assert seeded.query(ScheduleSlot).count() == 0

    def test_rejects_slots_off_the_granularity_grid(self, seeded, clock):
        with pytest.raises(ValidationError):
            ScheduleGenerator(seeded, clock=clock).generate(
                _request(time_slots=["09:30-10:30"]), DOCTOR_1
            )

    def test_duplicate_slot_rejects_whole_batch(self, seeded, clock):
        """An existing slot aborts the batch without creating the others."""
        generator = ScheduleGenerator(seeded, clock=clock)
        generator.generate(_request(time_slots=["10:00-11:00"]), DOCTOR_1)

        with pytest.raises(ConflictError) as exc_info:
            generator.generate(_request(), DOCTOR_1)

        assert exc_info.value.details["duplicates"] == [
            {"date": "2025-12-01", "time_slot": "10:00-11:00"}
        ]
        assert seeded.query(ScheduleSlot).count() == 1

    def test_unknown_or_inactive_doctor(self, seeded, clock):
        generator = ScheduleGenerator(seeded, clock=clock)

        with pytest.raises(NotFoundError):
            generator.generate(_request(doctor_id=42), ADMIN)
        with pytest.raises(NotFoundError):
            generator.generate(_request(doctor_id=3), ADMIN)

    def test_doctor_cannot_open_another_doctors_schedule(self, seeded, clock):
        with pytest.raises(PermissionDeniedError):
            ScheduleGenerator(seeded, clock=clock).generate(_request(doctor_id=2), DOCTOR_1)


class TestScheduleCreateRequest:

    def test_requires_dates_or_pattern(self):
        with pytest.raises(RequestValidationError):
            ScheduleCreateRequest(doctor_id=1, time_slots=["09:00-10:00"])

    def test_rejects_malformed_time_slot(self):
        with pytest.raises(RequestValidationError):
            ScheduleCreateRequest(doctor_id=1, dates=[date(2025, 12, 1)], time_slots=["9-10"])

    def test_range_needs_both_ends(self):
        with pytest.raises(RequestValidationError):
            ScheduleCreateRequest(doctor_id=1, dates=[date(2025, 12, 1)], start_time="09:00")

    def test_day_of_week_pattern_expands_from_start_date(self):
        request = ScheduleCreateRequest(
            doctor_id=1, days_of_week=[0, 2], start_date=date(2025, 12, 1), weeks=2
        )

        assert expand_dates(request, FIXED_NOW.date()) == [
            date(2025, 12, 1), date(2025, 12, 3), date(2025, 12, 8), date(2025, 12, 10)
        ]


class TestScheduleService:

    @pytest.fixture
    def slots(self, seeded, clock):
        return ScheduleGenerator(seeded, clock=clock).generate(_request(), DOCTOR_1)

    def test_block_and_unblock_toggle_availability(self, seeded, clock, slots):
        service = ScheduleService(seeded, clock=clock)

        blocked = service.set_availability(slots[0].id, False, DOCTOR_1, notes="Conference")
        assert blocked.is_available is False
        assert blocked.notes == "Conference"

        reopened = service.set_availability(slots[0].id, True, DOCTOR_1)
        assert reopened.is_available is True

    def test_blocking_requires_notice(self, seeded, clock, slots):
        clock.now = datetime(2025, 11, 30, 12, 0)

        with pytest.raises(PolicyError):
            ScheduleService(seeded, clock=clock).set_availability(slots[0].id, False, DOCTOR_1)

    def test_blocking_keeps_existing_appointment(self, seeded, clock, slots):
        seeded.add(Appointment(
            doctor_id=1, patient_id=1, date=date(2025, 12, 1),
            time_slot="09:00-10:00", status=AppointmentStatus.PENDING,
        ))
        seeded.commit()

        ScheduleService(seeded, clock=clock).set_availability(slots[0].id, False, DOCTOR_1)

        appointment = seeded.query(Appointment).one()
        assert appointment.status == AppointmentStatus.PENDING

    def test_block_time_creates_blocked_slot(self, seeded, clock):
        slot = ScheduleService(seeded, clock=clock).block_time(
            1, date(2025, 12, 2), "14:00-15:00", DOCTOR_1, reason="Surgery"
        )

        assert slot.is_available is False
        assert slot.notes == "Surgery"
        assert slot.day_of_week == 1

    def test_block_time_twice_conflicts(self, seeded, clock, slots):
        service = ScheduleService(seeded, clock=clock)
        service.block_time(1, date(2025, 12, 1), "09:00-10:00", DOCTOR_1)

        with pytest.raises(ConflictError):
            service.block_time(1, date(2025, 12, 1), "09:00-10:00", DOCTOR_1)

    def test_delete_removes_slot(self, seeded, clock, slots):
        service = ScheduleService(seeded, clock=clock)
        slot_id = slots[0].id

        service.delete(slot_id, DOCTOR_1)

        assert seeded.query(ScheduleSlot).filter(ScheduleSlot.id == slot_id).first() is None
        with pytest.raises(NotFoundError):
            service.delete(slot_id, DOCTOR_1)

    def test_other_doctor_cannot_delete(self, seeded, clock, slots):
        with pytest.raises(PermissionDeniedError):
            ScheduleService(seeded, clock=clock).delete(slots[0].id, DOCTOR_2)

    def test_weekly_groups_by_day(self, seeded, clock, slots):
        week = ScheduleService(seeded, clock=clock).weekly(1, date(2025, 12, 3))

        assert week["week_start"] == date(2025, 12, 1)
        assert len(week["schedule"]) == 7
        assert [s.time_slot for s in week["schedule"]["2025-12-01"]] == ["09:00-10:00", "10:00-11:00"]
        assert week["schedule"]["2025-12-02"] == []

    def test_list_slots_filters_availability(self, seeded, clock, slots):
        service = ScheduleService(seeded, clock=clock)
        service.set_availability(slots[1].id, False, DOCTOR_1)

        open_slots = service.list_slots(1, is_available=True)

        assert [s.time_slot for s in open_slots] == ["09:00-10:00"]

    def test_block_time_rejects_slot_off_the_grid(self, seeded, clock, slots):
        """A block straddling two grid slots is refused and leaves both open."""
        with pytest.raises(ValidationError) as exc_info:
            ScheduleService(seeded, clock=clock).block_time(
                1, date(2025, 12, 1), "09:30-10:30", DOCTOR_1
            )

        assert exc_info.value.details == {"time_slots": ["09:30-10:30"]}
        assert seeded.query(ScheduleSlot).count() == 2
        assert AvailabilityResolver(seeded, clock=clock).resolve(1, date(2025, 12, 1)) == [
            "09:00-10:00", "10:00-11:00"
        ]

    def test_block_time_rejects_slot_outside_working_hours(self, seeded, clock):
        with pytest.raises(ValidationError):
            ScheduleService(seeded, clock=clock).block_time(
                1, date(2025, 12, 1), "20:15-20:40", DOCTOR_1
            )

        assert seeded.query(ScheduleSlot).count() == 0


class TestUpdateSlot:

    @pytest.fixture
    def slots(self, seeded, clock):
        return ScheduleGenerator(seeded, clock=clock).generate(_request(), DOCTOR_1)

    def test_moves_slot_to_free_time(self, seeded, clock, slots):
        moved = ScheduleService(seeded, clock=clock).update_slot(
            slots[0].id, DOCTOR_1, time_slot="14:00-15:00"
        )

        assert moved.time_slot == "14:00-15:00"
        assert moved.is_available is True
        assert AvailabilityResolver(seeded, clock=clock).resolve(1, date(2025, 12, 1)) == [
            "10:00-11:00", "14:00-15:00"
        ]

    def test_move_and_block_together(self, seeded, clock, slots):
        moved = ScheduleService(seeded, clock=clock).update_slot(
            slots[0].id, DOCTOR_1, time_slot="15:00-16:00", is_available=False
        )

        assert (moved.time_slot, moved.is_available) == ("15:00-16:00", False)

    def test_rejects_time_off_the_grid(self, seeded, clock, slots):
        service = ScheduleService(seeded, clock=clock)

        with pytest.raises(ValidationError):
            service.update_slot(slots[0].id, DOCTOR_1, time_slot="09:30-10:30")
        with pytest.raises(ValidationError):
            service.update_slot(slots[0].id, DOCTOR_1, time_slot="17:00-18:00")

        seeded.refresh(slots[0])
        assert slots[0].time_slot == "09:00-10:00"

    def test_rejects_time_already_declared(self, seeded, clock, slots):
        with pytest.raises(ConflictError):
            ScheduleService(seeded, clock=clock).update_slot(
                slots[0].id, DOCTOR_1, time_slot="10:00-11:00"
            )

    def test_unique_constraint_catches_clash_missed_by_check(self, seeded, clock, slots, monkeypatch):
        """A clash created after the check is still refused by the store."""
        monkeypatch.setattr(ScheduleService, "_ensure_free", lambda self, slot, label: None)

        with pytest.raises(ConflictError):
            ScheduleService(seeded, clock=clock).update_slot(
                slots[0].id, DOCTOR_1, time_slot="10:00-11:00"
            )

        labels = sorted(s.time_slot for s in seeded.query(ScheduleSlot).all())
        assert labels == ["09:00-10:00", "10:00-11:00"]

    def test_moving_open_slot_needs_notice(self, seeded, clock, slots):
        clock.now = datetime(2025, 11, 30, 12, 0)

        with pytest.raises(PolicyError):
            ScheduleService(seeded, clock=clock).update_slot(
                slots[0].id, DOCTOR_1, time_slot="14:00-15:00"
            )

    def test_other_doctor_cannot_move(self, seeded, clock, slots):
        with pytest.raises(PermissionDeniedError):
            ScheduleService(seeded, clock=clock).update_slot(
                slots[0].id, DOCTOR_2, time_slot="14:00-15:00"
            )


class TestGeneratorStoreConflicts:

    def test_concurrent_duplicate_rolls_back_whole_batch(self, seeded, clock, monkeypatch):
        """A duplicate that slips past the pre-check aborts every insert."""
        seeded.add(ScheduleSlot(
            doctor_id=1, date=date(2025, 12, 1), time_slot="10:00-11:00",
            is_available=True, day_of_week=0,
        ))
        seeded.commit()
        monkeypatch.setattr(ScheduleGenerator, "_existing", lambda self, doctor_id, dates, labels: [])

        with pytest.raises(ConflictError):
            ScheduleGenerator(seeded, clock=clock).generate(_request(), DOCTOR_1)

        assert [s.time_slot for s in seeded.query(ScheduleSlot).all()] == ["10:00-11:00"]
