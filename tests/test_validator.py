from datetime import timedelta

import pytest

from salon.domain.scheduling.validator import SchedulingValidator
from salon.models import StaffAbsence
from salon.shared.errors import ResourceConflictError, SchedulingRejection

from .conftest import at_time


def candidate(service, staff, start, duration=None):
    return {
        "service_id": service.id,
        "staff_id": staff.id,
        "start": start,
        "duration_minutes": duration or service.duration_minutes,
    }


@pytest.mark.scheduling
class TestSchedulingValidator:
    """Test the admission decision for booking requests."""

    def test_admits_valid_booking(self, db_session, sample_services, sample_staff, business_hours, booking_day):
        start = at_time(booking_day, "10:00")
        conflicts = SchedulingValidator(db_session).validate([candidate(sample_services["cut"], sample_staff[0], start)])

        assert conflicts == []

    def test_ineligible_staff(self, db_session, sample_services, sample_staff, booking_day):
        start = at_time(booking_day, "10:00")

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate([candidate(sample_services["color"], sample_staff[1], start)])

        assert exc.value.kind == "ineligible-staff"
        assert exc.value.extra["staff_id"] == sample_staff[1].id
        assert exc.value.extra["service_id"] == sample_services["color"].id

    def test_eligible_staff_for_restricted_service(self, db_session, sample_services, sample_staff, booking_day):
        start = at_time(booking_day, "10:00")

        SchedulingValidator(db_session).validate([candidate(sample_services["color"], sample_staff[0], start)])

    def test_duplicate_staff(self, db_session, sample_services, sample_staff, booking_day):
        start = at_time(booking_day, "10:00")

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate(
                [
                    candidate(sample_services["cut"], sample_staff[0], start),
                    candidate(sample_services["wash"], sample_staff[0], start),
                ]
            )

        assert exc.value.kind == "duplicate-staff"
        assert exc.value.extra["staff_ids"] == [sample_staff[0].id]

    def test_outside_business_hours(self, db_session, sample_services, sample_staff, business_hours, booking_day):
        # Unrestricted staff; the slot ends after closing at 20:00
        sample_staff[0].schedule = []
        db_session.commit()
        start = at_time(booking_day, "19:30")

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate([candidate(sample_services["cut"], sample_staff[0], start)])

        assert exc.value.kind == "outside-hours"
        assert exc.value.extra["scope"] == "business"
        assert exc.value.message == "Outside local business hours"

    def test_business_closed_on_sunday(self, db_session, sample_services, sample_staff, business_hours, booking_day):
        start = at_time(booking_day - timedelta(days=1), "10:00")

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate([candidate(sample_services["cut"], sample_staff[0], start)])

        assert exc.value.extra["scope"] == "business"

    def test_outside_staff_window(self, db_session, sample_services, sample_staff, booking_day):
        start = at_time(booking_day, "17:30")

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate([candidate(sample_services["cut"], sample_staff[0], start)])

        assert exc.value.kind == "outside-hours"
        assert exc.value.extra["scope"] == "staff"

    def test_full_day_absence_blocks_whole_day(self, db_session, sample_services, sample_staff, booking_day):
        db_session.add(
            StaffAbsence(staff_id=sample_staff[0].id, date_from=booking_day, date_to=booking_day, reason="vacaciones")
        )
        db_session.commit()
        validator = SchedulingValidator(db_session)

        for hhmm in ("09:00", "12:00", "17:00"):
            with pytest.raises(SchedulingRejection) as exc:
                validator.validate([candidate(sample_services["cut"], sample_staff[0], at_time(booking_day, hhmm))])
            assert exc.value.kind == "absence-conflict"
            assert exc.value.extra["absence"]["reason"] == "vacaciones"

    def test_partial_absence_blocks_only_overlap(self, db_session, sample_services, sample_staff, booking_day):
        db_session.add(
            StaffAbsence(
                staff_id=sample_staff[0].id,
                date_from=booking_day,
                date_to=booking_day,
                time_from="12:00",
                time_to="14:00",
                reason="licencia",
            )
        )
        db_session.commit()
        validator = SchedulingValidator(db_session)
        cut = sample_services["cut"]

        validator.validate([candidate(cut, sample_staff[0], at_time(booking_day, "11:00"), duration=60)])

        with pytest.raises(SchedulingRejection) as exc:
            validator.validate([candidate(cut, sample_staff[0], at_time(booking_day, "12:30"), duration=30)])

        assert exc.value.kind == "absence-conflict"
        assert "licencia" in exc.value.message
        assert "12:00" in exc.value.message

    def test_inactive_staff(self, db_session, sample_services, sample_staff, booking_day):
        sample_staff[2].active = False
        db_session.commit()

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate(
                [candidate(sample_services["cut"], sample_staff[2], at_time(booking_day, "10:00"))]
            )

        assert exc.value.kind == "inactive-staff"

    def test_staff_busy(self, db_session, sample_services, sample_staff, make_appointment, booking_day):
        existing = make_appointment(sample_services["cut"], sample_staff[0], at_time(booking_day, "10:00"))

        with pytest.raises(SchedulingRejection) as exc:
            SchedulingValidator(db_session).validate(
                [candidate(sample_services["cut"], sample_staff[0], at_time(booking_day, "10:30"))]
            )

        assert exc.value.kind == "staff-busy"
        assert exc.value.extra["appointment_id"] == existing.id

    def test_staff_busy_ignores_excluded_appointment(
        self, db_session, sample_services, sample_staff, make_appointment, booking_day
    ):
        existing = make_appointment(sample_services["cut"], sample_staff[0], at_time(booking_day, "10:00"))

        SchedulingValidator(db_session).validate(
            [candidate(sample_services["cut"], sample_staff[0], at_time(booking_day, "10:30"))],
            exclude_ids=[existing.id],
        )

    def test_resource_conflict_is_soft(self, db_session, sample_services, sample_staff, booking_day):
        start = at_time(booking_day, "10:00")
        wash = sample_services["wash"]
        candidates = [candidate(wash, member, start) for member in sample_staff]
        validator = SchedulingValidator(db_session)

        with pytest.raises(ResourceConflictError) as exc:
            validator.validate(candidates)

        assert exc.value.kind == "resource-conflict"
        assert exc.value.extra["conflicts"][0]["required_quantity"] == 3

        forced = validator.validate(candidates, skip_resource_check=True)
        assert len(forced) == 1

    def test_hard_rule_wins_over_skip(self, db_session, sample_services, sample_staff, booking_day):
        with pytest.raises(SchedulingRejection):
            SchedulingValidator(db_session).validate(
                [candidate(sample_services["color"], sample_staff[1], at_time(booking_day, "10:00"))],
                skip_resource_check=True,
            )
