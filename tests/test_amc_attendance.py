from datetime import date, datetime, timezone

import pytest

import amc
import attendance
from errors import ConflictError, PermissionDeniedError, ValidationError
from schemas import Amc, AmcStatus


def _contract(**overrides):
    data = dict(
        customer_id="cust-1",
        customer_name="Meera Customer",
        vehicle_number="KA01EV1234",
        vehicle_category="4 Wheeler",
        plan_name="Standard Service",
        start_date="2024-01-01",
        end_date="2025-01-01",
    )
    data.update(overrides)
    return Amc(**data)


class TestAmc:

    def test_unknown_plan_rejected(self, db):
        with pytest.raises(ValidationError):
            amc.add_amc(_contract(plan_name="Gold"))

    def test_end_must_follow_start(self, db):
        with pytest.raises(ValidationError):
            amc.add_amc(_contract(end_date="2024-01-01"))

    def test_customer_sees_own_contracts(self, db, admin, customer):
        amc.add_amc(_contract())
        amc.add_amc(_contract(customer_id="cust-2", vehicle_number="MH12AB0001"))
        assert len(amc.list_amcs(admin)) == 2
        assert [c["vehicle_number"] for c in amc.list_amcs(customer)] == ["KA01EV1234"]

    def test_expire_lapsed(self, db, admin):
        lapsed = amc.add_amc(_contract())
        current = amc.add_amc(_contract(start_date="2024-06-01", end_date="2025-06-01"))
        cancelled = amc.add_amc(_contract(end_date="2024-02-01"))
        amc.update_amc_status(cancelled, AmcStatus.cancelled)

        assert amc.expire_lapsed(date(2025, 3, 1)) == 1
        statuses = {c["id"]: c["status"] for c in amc.list_amcs(admin)}
        assert statuses == {lapsed: "Expired", current: "Active", cancelled: "Cancelled"}


class TestAttendance:

    def test_clock_in_and_out(self, db, technician):
        record_id = attendance.clock_in(technician.id, technician.name)
        with pytest.raises(ConflictError):
            attendance.clock_in(technician.id, technician.name)

        attendance.clock_out(record_id, technician)
        record = attendance.todays_records(technician)[0]
        assert record["clock_out_time"] is not None

        with pytest.raises(ConflictError):
            attendance.clock_out(record_id, technician)

        # Clocked out, so a second shift may start
        attendance.clock_in(technician.id, technician.name)

    def test_shift_left_open_yesterday_blocks_clock_in(self, db, technician):
        attendance.clock_in(technician.id, technician.name, now=datetime(2024, 6, 3, 9, tzinfo=timezone.utc))
        with pytest.raises(ConflictError):
            attendance.clock_in(technician.id, technician.name, now=datetime(2024, 6, 4, 9, tzinfo=timezone.utc))

    def test_cannot_clock_out_someone_else(self, db, technician, customer):
        record_id = attendance.clock_in(technician.id, technician.name)
        with pytest.raises(PermissionDeniedError):
            attendance.clock_out(record_id, customer)

    def test_records_for_month(self, db, admin, technician):
        leap_day = attendance.clock_in(technician.id, technician.name,
                                       now=datetime(2024, 2, 29, 9, tzinfo=timezone.utc))
        attendance.clock_out(leap_day, technician)
        attendance.clock_in(technician.id, technician.name, now=datetime(2024, 3, 1, 9, tzinfo=timezone.utc))
        february = attendance.records_for_month(2024, 2, admin)
        assert [r["date"] for r in february] == ["2024-02-29"]
        assert len(attendance.records_for_month(2024, 3, technician)) == 1

    def test_daily_report_weekday(self):
        employees = [{"id": "e1", "name": "A", "role": "technician"}, {"id": "e2", "name": "B", "role": "admin"}]
        records = [{"technician_id": "e1", "clock_in_time": "2024-06-03T09:00:00+00:00"}]
        report = attendance.daily_report(employees, records, today=date(2024, 6, 3))
        assert report["present"] == 1
        assert report["absent"] == 1
        assert report["efficiency"] == 50.0
        assert [d["status"] for d in report["details"]] == ["Present", "Absent"]

    def test_daily_report_weekend(self):
        employees = [{"id": "e1", "name": "A"}]
        report = attendance.daily_report(employees, [], today=date(2024, 6, 8))
        assert report["absent"] == 0
        assert report["details"][0]["status"] == "Weekend"
