from conftest import headers_for


def _ticket_payload(customer):
    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "contact_number": customer.phone,
        "vehicle_number": "KA05EV0001",
        "issue": "Motor noise",
    }


def test_root(client):
    assert client.get("/").json() == {"message": "Garage Back-Office API running"}


def test_requires_token(client):
    assert client.get("/api/complaints").status_code == 401


def test_rejects_bad_token(client):
    resp = client.get("/api/complaints", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_ticket_workflow_over_http(client, admin, technician, customer, part):
    as_admin, as_tech, as_cust = headers_for(admin), headers_for(technician), headers_for(customer)

    resp = client.post("/api/complaints", json=_ticket_payload(customer), headers=as_cust)
    assert resp.status_code == 201
    complaint_id = resp.json()["id"]

    ticket = client.get(f"/api/complaints/{complaint_id}", headers=as_admin).json()
    assert ticket["status"] == "Open"
    assert ticket["next_statuses"] == ["Technician Assigned"]

    resp = client.post(f"/api/complaints/{complaint_id}/assign", json={"technician_id": technician.id},
                       headers=as_tech)
    assert resp.status_code == 403
    resp = client.post(f"/api/complaints/{complaint_id}/assign", json={"technician_id": technician.id},
                       headers=as_admin)
    assert resp.json() == {"assigned": True}

    item = {"id": part["id"], "name": part["name"], "price": 1000, "gst_rate": 18}
    resp = client.post(f"/api/complaints/{complaint_id}/estimate-items", json={"kind": "part", "item": item},
                       headers=as_tech)
    assert resp.status_code == 201

    ticket = client.get(f"/api/complaints/{complaint_id}", headers=as_tech).json()
    assert ticket["estimate_totals"] == {"subtotal": 1000, "total_tax": 180, "total": 1180}

    for status, headers in [("Estimate Shared", as_tech)]:
        assert client.post(f"/api/complaints/{complaint_id}/status", json={"status": status},
                           headers=headers).status_code == 200
    assert client.post(f"/api/complaints/{complaint_id}/approve-estimate", headers=as_cust).status_code == 200
    assert client.post(f"/api/complaints/{complaint_id}/status", json={"status": "In Progress"},
                       headers=as_tech).status_code == 200
    client.post(f"/api/complaints/{complaint_id}/actual-items", json={"kind": "part", "item": item},
                headers=as_tech)
    assert client.post(f"/api/complaints/{complaint_id}/status", json={"status": "Resolved"},
                       headers=as_tech).status_code == 200

    resp = client.post(f"/api/complaints/{complaint_id}/close", headers=as_admin)
    assert resp.status_code == 200
    invoice_id = resp.json()["invoice_id"]
    assert resp.json()["total"] == 1180

    invoices = client.get("/api/invoices", headers=as_cust).json()
    assert [inv["id"] for inv in invoices] == [invoice_id]

    assert client.post(f"/api/invoices/{invoice_id}/mark-paid", headers=as_admin).json() == {"updated": True}
    assert client.get(f"/api/invoices/{invoice_id}", headers=as_admin).json()["status"] == "Paid"


def test_illegal_transition_is_conflict(client, admin, customer):
    complaint_id = client.post("/api/complaints", json=_ticket_payload(customer),
                               headers=headers_for(customer)).json()["id"]
    resp = client.post(f"/api/complaints/{complaint_id}/status", json={"status": "Resolved"},
                       headers=headers_for(admin))
    assert resp.status_code == 409
    assert "Cannot move" in resp.json()["detail"]


def test_invalid_id_and_missing_ticket(client, admin):
    h = headers_for(admin)
    assert client.get("/api/complaints/not-an-id", headers=h).status_code == 400
    assert client.get("/api/complaints/5f0c1b2a3d4e5f6a7b8c9d0e", headers=h).status_code == 404


def test_inventory_admin_only_writes(client, admin, technician):
    payload = {"part_number": "BRK-01", "name": "Brake pad", "category": "Mechanical", "price": 450, "stock": 3}
    assert client.post("/api/inventory/parts", json=payload, headers=headers_for(technician)).status_code == 403
    part_id = client.post("/api/inventory/parts", json=payload, headers=headers_for(admin)).json()["id"]

    found = client.get("/api/inventory/parts/sku/BRK-01", headers=headers_for(technician)).json()
    assert found["id"] == part_id

    resp = client.post(f"/api/inventory/parts/{part_id}/adjust",
                       json={"quantity": 2, "reason": "Damaged", "mode": "remove"}, headers=headers_for(admin))
    assert resp.json()["new_quantity"] == 1


def test_notifications_for_admin(client, admin, customer):
    client.post("/api/complaints", json=_ticket_payload(customer), headers=headers_for(customer))
    items = client.get("/api/notifications", headers=headers_for(admin)).json()
    assert items and items[0]["title"] == "New complaint submitted"

    resp = client.patch(f"/api/notifications/{items[0]['id']}", json={"is_read": True}, headers=headers_for(admin))
    assert resp.json() == {"updated": True}
    assert client.get("/api/notifications?unread_only=true", headers=headers_for(admin)).json() == []


def test_store_feed_sends_snapshot(client, admin, customer):
    client.post("/api/complaints", json=_ticket_payload(customer), headers=headers_for(customer))
    token = headers_for(admin)["Authorization"].split()[1]
    with client.websocket_connect(f"/ws/complaints?token={token}") as ws:
        snapshot = ws.receive_json()
        assert len(snapshot) == 1
        assert snapshot[0]["vehicle_number"] == "KA05EV0001"

        client.post("/api/complaints", json={**_ticket_payload(customer), "vehicle_number": "KA05EV0002"},
                    headers=headers_for(customer))
        ws.send_text("refresh")
        snapshot = ws.receive_json()
        assert {c["vehicle_number"] for c in snapshot} == {"KA05EV0001", "KA05EV0002"}
