import pytest

import people
import tickets
from errors import NotFoundError, ValidationError
from schemas import ComplaintStatus, Customer, Employee, ItemKind, LineItem, Role, Vendor, VendorStatus


def test_customer_crud(db):
    customer_id = people.add_customer(Customer(name="Green Fleet Pvt Ltd", type="B2B", mobile="+919822222222",
                                               email="ops@greenfleet.in", vehicles=["KA01EV1234"]))
    assert people.get_customer(customer_id)["email"] == "ops@greenfleet.in"

    people.update_customer(customer_id, {"remarks": "Monthly billing", "address": None})
    assert people.get_customer(customer_id)["remarks"] == "Monthly billing"
    with pytest.raises(ValidationError):
        people.update_customer(customer_id, {"address": None})

    people.delete_customer(customer_id)
    with pytest.raises(NotFoundError):
        people.get_customer(customer_id)
    with pytest.raises(NotFoundError):
        people.delete_customer(customer_id)


def test_service_history_lists_completed_work(db, admin, technician, complaint_payload, customer):
    customer_id = people.add_customer(Customer(name="Meera Customer", mobile=customer.phone,
                                               vehicles=["KA01EV1234"]))
    labour = LineItem(id="svc-2", name="Brake bleed", price=800, gst_rate=18)

    done = tickets.create_complaint(complaint_payload, customer)
    tickets.assign_technician(done, {"id": technician.id, "name": technician.name, "role": "technician"}, admin)
    tickets.add_estimated_item(done, labour, ItemKind.service, technician)
    tickets.update_status(done, ComplaintStatus.estimate_shared, technician)
    tickets.approve_estimate(done, customer)
    tickets.update_status(done, ComplaintStatus.in_progress, technician)
    tickets.add_actual_item(done, labour, ItemKind.service, technician)
    tickets.update_status(done, ComplaintStatus.resolved, technician)
    tickets.create_complaint(complaint_payload, customer)

    history = people.service_history(customer_id)
    assert len(history) == 1
    assert history[0]["complaint_id"] == done
    assert history[0]["service_performed"] == "Brake bleed"
    assert history[0]["technician"] == "Ravi Tech"
    assert history[0]["cost"] == 800
    assert people.service_history(customer_id, vehicle_number="XX00XX0000") == []


def test_employees_and_technicians(db, technician):
    ids = people.batch_add_employees([
        Employee(name="Zoya Admin", role=Role.admin),
        Employee(name="Arun Tech", role=Role.technician, specialization="Battery"),
    ])
    assert len(ids) == 2
    assert [t["name"] for t in people.list_technicians()] == ["Arun Tech", "Ravi Tech"]
    assert len(people.list_employees()) == 3

    people.update_employee(ids[1], {"location": "Bengaluru"})
    assert people.get_employee(ids[1])["location"] == "Bengaluru"


def test_vendor_status(db):
    vendor_id = people.add_vendor(Vendor(name="CellCo", category="Parts Supplier",
                                         contact={"name": "Priya", "phone": "+919833333333"}))
    assert people.list_vendors()[0]["status"] == "Pending Approval"
    people.update_vendor_status(vendor_id, VendorStatus.active)
    assert people.list_vendors()[0]["status"] == "Active"
