"""Admin session and inscription management."""

from ticketgate.model.orm import AWAITING_APPROVAL, PENDING

from conftest import ADMIN_PASSWORD, make_inscription


def _voucher(id="vouch", **kw):
    ins = make_inscription(id, status=AWAITING_APPROVAL,
                           tickets=[("v1", "Ana Souza"), ("v2", "Bruno Lima")],
                           **kw)
    ins.applied_coupon = "FREE"
    ins.discount_value = ins.total_price
    ins.total_price = 0.0
    return ins


class TestSession:
    def test_requires_login(self, client):
        r = client.get("/api/admin/inscriptions")
        assert r.status_code == 401
        assert r.json()["status"] == "unauthorized"

    def test_wrong_password(self, client):
        r = client.post("/api/admin/login", json={"password": "guess"})
        assert r.status_code == 401
        r = client.post("/api/admin/login", json={})
        assert r.status_code == 400

    def test_login_and_logout(self, client):
        r = client.post("/api/admin/login", json={"password": ADMIN_PASSWORD})
        assert r.json() == {"success": True}
        assert client.get("/api/admin/inscriptions").status_code == 200

        client.post("/api/admin/logout")
        assert client.get("/api/admin/inscriptions").status_code == 401


def test_list_newest_first(admin_client, seed):
    seed(
        make_inscription("older", created_at=1000.0, email="a@example.com"),
        make_inscription("newer", created_at=2000.0, email="b@example.com",
                         tickets=[("n1", "Ana Souza")]),
    )
    r = admin_client.get("/api/admin/inscriptions")
    assert r.status_code == 200
    body = r.json()
    assert [i["id"] for i in body] == ["newer", "older"]
    assert body[0]["tickets"][0]["participantName"] == "Ana Souza"
    assert "qrCodeDataURL" not in body[0]["tickets"][0]
    assert body[1]["tickets"] == []


class TestApprove:
    def test_approve_voucher(self, admin_client, seed):
        seed(_voucher())
        r = admin_client.post("/api/admin/approve-inscription",
                              json={"id": "vouch"})
        assert r.status_code == 200
        assert r.json()["success"] is True

        r = admin_client.get("/api/check-status", params={"id": "vouch"})
        assert r.json() == {"status": "paid"}
        tickets = admin_client.get("/api/get-tickets",
                                   params={"id": "vouch"}).json()
        assert all(t["status"] == "valid" for t in tickets)
        assert all(t["qrCodeDataURL"] for t in tickets)

        outbox = admin_client.app.state.mailer.outbox
        assert len(outbox) == 1
        assert "aprovado" in outbox[0]["subject"]
        assert "FREE" in outbox[0]["html"]

    def test_approve_twice(self, admin_client, seed):
        seed(_voucher())
        admin_client.post("/api/admin/approve-inscription",
                          json={"id": "vouch"})
        r = admin_client.post("/api/admin/approve-inscription",
                              json={"id": "vouch"})
        assert r.status_code == 404
        assert len(admin_client.app.state.mailer.outbox) == 1

    def test_only_awaiting_approval_can_be_approved(self, admin_client, seed):
        seed(make_inscription("pend", status=PENDING))
        r = admin_client.post("/api/admin/approve-inscription",
                              json={"id": "pend"})
        assert r.status_code == 404

    def test_missing_id(self, admin_client):
        r = admin_client.post("/api/admin/approve-inscription", json={})
        assert r.status_code == 400


def test_delete(admin_client, seed):
    seed(make_inscription("gone", tickets=[("g1", "Ana Souza")]))
    r = admin_client.post("/api/admin/delete-inscription", json={"id": "gone"})
    assert r.status_code == 200
    assert admin_client.get("/api/check-status",
                            params={"id": "gone"}).status_code == 404

    r = admin_client.post("/api/admin/delete-inscription", json={"id": "gone"})
    assert r.status_code == 404


def test_regenerate_qrcodes(admin_client, seed):
    seed(
        make_inscription("multi", email="a@example.com",
                         tickets=[("m1", "Ana Souza"), ("m2", "Bruno Lima")]),
        make_inscription("legacy", email="b@example.com"),
        make_inscription("unpaid", status=PENDING, email="c@example.com"),
    )
    r = admin_client.post("/api/admin/regenerate-qrcodes")
    assert r.json() == {"success": True, "count": 2}

    tickets = admin_client.get("/api/get-tickets",
                               params={"id": "multi"}).json()
    assert all(t["qrCodeDataURL"].startswith("data:image/png;base64,")
               for t in tickets)
    legacy = admin_client.get("/api/get-ticket",
                              params={"id": "legacy"}).json()
    assert legacy["qrCodeDataURL"].startswith("data:image/png;base64,")

    r = admin_client.post("/api/admin/regenerate-qrcodes")
    assert r.json()["count"] == 0
