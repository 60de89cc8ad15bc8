from datetime import date

import pytest

from salon.domain.scheduling.resource_service import ResourceCapacityService, compute_conflicts
from salon.domain.scheduling.time_calculator import at
from salon.models import Resource

from .conftest import at_time

DAY = date(2030, 3, 4)


@pytest.mark.scheduling
class TestComputeConflicts:
    """Test peak concurrency against resource quantity."""

    def test_three_candidates_on_two_units(self):
        chair = Resource(id=7, name="Sillón", quantity=2)
        interval = (at(DAY, "10:00"), at(DAY, "10:30"))

        conflicts = compute_conflicts({7: [interval, interval, interval]}, {}, {7: chair})

        assert conflicts == [
            {
                "resource_id": 7,
                "resource_name": "Sillón",
                "available_quantity": 2,
                "required_quantity": 3,
            }
        ]

    def test_existing_usage_counts_only_when_overlapping(self):
        chair = Resource(id=7, name="Sillón", quantity=1)
        new = [(at(DAY, "10:00"), at(DAY, "10:30"))]
        existing = [(at(DAY, "09:00"), at(DAY, "10:00")), (at(DAY, "10:30"), at(DAY, "11:00"))]

        assert compute_conflicts({7: new}, {7: existing}, {7: chair}) == []

    def test_existing_overlap_exceeds_capacity(self):
        chair = Resource(id=7, name="Sillón", quantity=1)
        new = [(at(DAY, "10:00"), at(DAY, "10:30"))]
        existing = [(at(DAY, "10:15"), at(DAY, "10:45"))]

        conflicts = compute_conflicts({7: new}, {7: existing}, {7: chair})

        assert conflicts[0]["required_quantity"] == 2


@pytest.mark.scheduling
class TestResourceCapacityService:
    """Test capacity checks against persisted appointments."""

    def candidates(self, service, start, count):
        return [
            {"service_id": service.id, "start": start, "duration_minutes": service.duration_minutes}
            for _ in range(count)
        ]

    def test_within_capacity(self, db_session, sample_services, booking_day):
        start = at_time(booking_day, "10:00")
        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["wash"], start, 2))

        assert conflicts == []

    def test_exactly_one_conflict_when_exceeded(self, db_session, sample_services, sample_resource, booking_day):
        start = at_time(booking_day, "10:00")
        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["wash"], start, 3))

        assert len(conflicts) == 1
        assert conflicts[0]["resource_id"] == sample_resource.id
        assert conflicts[0]["available_quantity"] == 2
        assert conflicts[0]["required_quantity"] == 3

    def test_services_without_resource_are_ignored(self, db_session, sample_services, booking_day):
        start = at_time(booking_day, "10:00")
        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["cut"], start, 5))

        assert conflicts == []

    def test_persisted_appointments_count(self, db_session, sample_services, sample_staff, make_appointment, booking_day):
        start = at_time(booking_day, "10:00")
        make_appointment(sample_services["wash"], sample_staff[0], start)
        make_appointment(sample_services["wash"], sample_staff[1], start)

        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["wash"], start, 1))

        assert conflicts[0]["required_quantity"] == 3

    def test_cancelled_appointments_do_not_count(
        self, db_session, sample_services, sample_staff, make_appointment, booking_day
    ):
        start = at_time(booking_day, "10:00")
        make_appointment(sample_services["wash"], sample_staff[0], start, status="cancelado")
        make_appointment(sample_services["wash"], sample_staff[1], start, confirmation_status="cancelado")

        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["wash"], start, 2))

        assert conflicts == []

    def test_excluded_appointments_do_not_count(
        self, db_session, sample_services, sample_staff, make_appointment, booking_day
    ):
        start = at_time(booking_day, "10:00")
        first = make_appointment(sample_services["wash"], sample_staff[0], start)
        make_appointment(sample_services["wash"], sample_staff[1], start)

        conflicts = ResourceCapacityService(db_session).check(
            self.candidates(sample_services["wash"], start, 1), exclude_ids=[first.id]
        )

        assert conflicts == []

    def test_final_service_decides_resource(
        self, db_session, sample_services, sample_staff, make_appointment, booking_day
    ):
        start = at_time(booking_day, "10:00")
        make_appointment(
            sample_services["cut"],
            sample_staff[0],
            start,
            final_service_id=sample_services["wash"].id,
            duration_minutes=30,
        )
        make_appointment(sample_services["wash"], sample_staff[1], start)

        conflicts = ResourceCapacityService(db_session).check(self.candidates(sample_services["wash"], start, 1))

        assert conflicts[0]["required_quantity"] == 3


@pytest.mark.scheduling
class TestResourceAvailabilityEndpoint:
    """Test POST /resources/availability."""

    def test_reports_conflicts(self, client, sample_services, sample_resource, booking_day):
        wash = sample_services["wash"]
        response = client.post(
            "/resources/availability",
            json={
                "start": at_time(booking_day, "10:00").isoformat(),
                "items": [{"service_id": wash.id, "duration_minutes": 30}] * 3,
                "exclude_ids": [],
            },
        )

        assert response.status_code == 200
        conflicts = response.json()["conflicts"]
        assert len(conflicts) == 1
        assert conflicts[0]["resource_name"] == "Sillón de lavado"
        assert conflicts[0]["required_quantity"] == 3

    def test_no_conflicts(self, client, sample_services, booking_day):
        response = client.post(
            "/resources/availability",
            json={
                "start": at_time(booking_day, "10:00").isoformat(),
                "items": [{"service_id": sample_services["wash"].id, "duration_minutes": 30}],
            },
        )

        assert response.json() == {"conflicts": []}

    def test_empty_items_rejected(self, client, booking_day):
        response = client.post(
            "/resources/availability",
            json={"start": at_time(booking_day, "10:00").isoformat(), "items": []},
        )

        assert response.status_code == 422
