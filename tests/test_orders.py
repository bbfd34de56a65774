from bson import ObjectId


def order_body(**overrides):
    body = {
        "customer": {"name": "Jane Doe", "email": "jane@shopmail.com", "phone": "+1 555 0100"},
        "shippingAddress": {"street": "1 Main St", "city": "Springfield", "state": "IL", "zipCode": "62701"},
        "items": [{"product": str(ObjectId()), "productName": "Dog Leash", "price": "19.99", "quantity": "2"}],
        "totalAmount": 39.98,
    }
    body.update(overrides)
    return body


def place(client, auth, **overrides):
    res = client.post("/api/orders", json=order_body(**overrides), headers=auth)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_create_order(client, auth):
    order = place(client, auth)
    assert order["status"] == "Pending"
    assert order["items"][0]["price"] == 19.99
    assert order["items"][0]["quantity"] == 2
    assert "createdAt" in order


def test_create_order_reports_all_errors(client, auth):
    res = client.post("/api/orders", json={"items": [], "totalAmount": 0}, headers=auth)
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Order validation failed"
    assert "Customer information is missing" in body["errors"]
    assert "At least one order item is required" in body["errors"]
    assert "Total amount is missing" in body["errors"]
    assert body["receivedData"]["hasItems"] is True
    assert body["receivedData"]["itemsCount"] == 0


def test_malformed_order_sections_are_validation_errors(client, auth):
    res = client.post("/api/orders", json=order_body(customer="bob", shippingAddress=["1 Main St"], items=["oops", 3]),
                      headers=auth)
    assert res.status_code == 400
    errors = res.json()["errors"]
    assert "Customer information must be an object" in errors
    assert "Shipping address must be an object" in errors
    assert "Item 1: must be an object" in errors
    assert "Item 2: must be an object" in errors


def test_dispatch_records_tracking(client, auth):
    order = place(client, auth)
    res = client.patch(f"/api/orders/{order['_id']}/dispatch",
                       json={"trackingNumber": "TRK1", "carrier": "UPS"}, headers=auth)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "Dispatched"
    assert data["tracking"]["trackingNumber"] == "TRK1"
    assert "dispatchedAt" in data

    res = client.patch(f"/api/orders/{order['_id']}/dispatch", json={}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"] == "Only pending orders can be dispatched"


def test_cancel_uses_default_reason(client, auth):
    order = place(client, auth)
    res = client.patch(f"/api/orders/{order['_id']}/cancel", json={}, headers=auth)
    data = res.json()["data"]
    assert data["status"] == "Cancelled"
    assert data["cancellationReason"] == "No reason provided"
    assert "cancelledAt" in data


def test_dispatched_order_can_be_cancelled(client, auth):
    order = place(client, auth)
    client.patch(f"/api/orders/{order['_id']}/dispatch", json={}, headers=auth)
    res = client.patch(f"/api/orders/{order['_id']}/status", json={"status": "Cancelled", "reason": "lost parcel"},
                       headers=auth)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "Cancelled"
    assert data["cancellationReason"] == "lost parcel"
    assert "cancelledAt" in data


def test_delivered_order_cannot_be_cancelled_on_either_route(client, auth):
    order = place(client, auth)
    res = client.patch(f"/api/orders/{order['_id']}/status", json={"status": "Delivered"}, headers=auth)
    assert res.json()["message"] == "Order delivered successfully"

    for path, body in (("cancel", {}), ("status", {"status": "Cancelled"})):
        res = client.patch(f"/api/orders/{order['_id']}/{path}", json=body, headers=auth)
        assert res.status_code == 400
        assert res.json()["message"] == "Cannot cancel delivered orders"

    stored = client.get(f"/api/orders/{order['_id']}").json()["data"]
    assert stored["status"] == "Delivered"
    assert "cancelledAt" not in stored


def test_invalid_status(client, auth):
    order = place(client, auth)
    res = client.patch(f"/api/orders/{order['_id']}/status", json={"status": "Lost"}, headers=auth)
    assert res.status_code == 400
    assert res.json()["message"].startswith("Invalid status")


def test_stats_exclude_cancelled_revenue(client, auth):
    place(client, auth)
    cancelled = place(client, auth, totalAmount=100)
    client.patch(f"/api/orders/{cancelled['_id']}/cancel", json={"reason": "changed mind"}, headers=auth)

    stats = client.get("/api/orders/stats/summary").json()["data"]
    assert stats["totalOrders"] == 2
    assert stats["cancelledOrders"] == 1
    assert stats["totalRevenue"] == 39.98


def test_list_and_delete(client, auth):
    order = place(client, auth)
    body = client.get("/api/orders", params={"status": "Pending"}).json()
    assert body["pagination"]["total"] == 1
    assert client.delete(f"/api/orders/{order['_id']}", headers=auth).status_code == 200
    assert client.get(f"/api/orders/{order['_id']}").status_code == 404
