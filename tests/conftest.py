import os

# Keep tests off any real database and out of transaction mode before settings load
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)
os.environ["USE_TRANSACTIONS"] = "false"
os.environ["REALTIME_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"

import mongomock  # noqa: E402
import pytest  # noqa: E402
from starlette.testclient import TestClient  # noqa: E402

import database  # noqa: E402
import people  # noqa: E402
from auth import CurrentUser, create_access_token  # noqa: E402
from schemas import Complaint, Employee, InventoryPart, Role  # noqa: E402


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["garage_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    from main import app
    with TestClient(app) as c:
        yield c


def headers_for(user: CurrentUser) -> dict:
    token = create_access_token({
        "sub": user.id,
        "role": user.role.value,
        "name": user.name,
        "phone": user.phone,
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin():
    return CurrentUser(id="admin-1", name="Asha Admin", role=Role.admin)


@pytest.fixture
def technician(db):
    tech_id = people.add_employee(Employee(name="Ravi Tech", phone="+919800000001", role=Role.technician))
    return CurrentUser(id=tech_id, name="Ravi Tech", role=Role.technician, phone="+919800000001")


@pytest.fixture
def customer():
    return CurrentUser(id="cust-1", name="Meera Customer", role=Role.customer, phone="+919811111111")


@pytest.fixture
def complaint_payload(customer):
    return Complaint(
        customer_id=customer.id,
        customer_name=customer.name,
        contact_number=customer.phone,
        vehicle_number="KA01EV1234",
        vehicle_model="Nexon EV",
        issue="Battery not charging",
        detailed_issue="Charger light blinks red after 5 minutes",
    )


@pytest.fixture
def part(db):
    import inventory
    part = InventoryPart(
        part_number="BAT-CELL-01",
        name="Battery cell module",
        category="Battery",
        stock=5,
        min_stock_level=2,
        price=1000,
        gst_rate=18,
    )
    part_id = inventory.add_part(part)
    return {"id": part_id, **part.model_dump(mode="json")}
