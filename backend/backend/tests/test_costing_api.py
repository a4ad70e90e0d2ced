from decimal import Decimal

import pytest

from app.db.models.costing import StaffRateCard
from app.db.models.security_audit import AuditLog
from app.events.outbox import OutboxEvent

D = Decimal


@pytest.fixture
def quote(make_quote):
    return make_quote(total_amount="10000.00", labour_estimate="900.00")


def post_scenario_a(client, quote_id, staff_id):
    r = client.post(f"/quotes/{quote_id}/costs", json={
        "category": "materials", "unit": "count", "description": "Pool fence panels",
        "quantity": "8", "unit_cost": "500.00", "total_cost": "4000.00", "material_source": "glass_supplier",
    })
    assert r.status_code == 200, r.text
    labour = client.post(f"/quotes/{quote_id}/costs", json={
        "category": "install_labour", "description": "Install", "quantity": "2",
        "unit_cost": "50.00", "total_cost": "100.00", "staff_id": staff_id,
    })
    assert labour.status_code == 200, labour.text
    r = client.post(f"/quotes/{quote_id}/trips", json={
        "trip_type": "panel_install", "staff_id": staff_id, "duration_minutes": 35, "travel_cost_total": "80.00",
    })
    assert r.status_code == 200, r.text
    r = client.post(f"/quotes/{quote_id}/admin-time", json={
        "activity_type": "quote_creation", "duration_minutes": 25, "total_cost": "40.00",
    })
    assert r.status_code == 200, r.text
    return labour.json()


class TestCostComponents:
    def test_scenario_a_through_the_api(self, client, quote, users):
        post_scenario_a(client, quote.id, users["installer"].id)
        summary = client.get(f"/quotes/{quote.id}/pl-summary").json()
        assert summary["total_cost"] == "4220.00"
        assert summary["profit_amount"] == "5780.00"
        assert summary["profit_margin_percent"] == "57.80"
        assert summary["total_install_minutes"] == 120
        assert summary["actual_trip_count"] == 1
        assert summary["is_supply_only"] is False

    def test_scenario_c_delete(self, client, quote, users):
        labour = post_scenario_a(client, quote.id, users["installer"].id)
        r = client.delete(f"/quotes/{quote.id}/costs/{labour['id']}")
        assert r.status_code == 200
        summary = client.get(f"/quotes/{quote.id}/pl-summary").json()
        assert summary["total_cost"] == "4120.00"
        assert summary["installation_labour_cost"] == "0.00"

    def test_money_is_returned_as_strings(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "supplier_fees", "description": "Delivery", "unit_cost": "65", "total_cost": "65",
        })
        body = r.json()
        assert body["unit"] == "count"
        assert body["total_cost"] == "65.00"
        assert isinstance(body["unit_cost"], str)

    def test_labour_must_be_in_hours(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "manufacturing_labour", "unit": "count", "description": "Welding", "total_cost": "10",
        })
        assert r.status_code == 422

    def test_materials_cannot_be_in_hours(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "materials", "unit": "hours", "description": "Posts", "total_cost": "10", "unit_cost": "10",
        })
        assert r.status_code == 422

    def test_unknown_category(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={"category": "travel", "description": "x"})
        assert r.status_code == 422

    def test_nan_cost_is_rejected(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "materials", "description": "Posts", "unit_cost": "NaN", "total_cost": "NaN",
        })
        assert r.status_code == 422

    def test_patch_cannot_pair_category_with_foreign_unit(self, client, quote):
        created = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "materials", "unit": "length", "description": "Rail", "unit_cost": "5", "total_cost": "50",
            "quantity": "10",
        }).json()
        r = client.patch(f"/quotes/{quote.id}/costs/{created['id']}", json={"category": "install_labour"})
        assert r.status_code == 422
        r = client.patch(f"/quotes/{quote.id}/costs/{created['id']}", json={"category": "install_labour", "unit": "hours"})
        assert r.status_code == 200
        summary = client.get(f"/quotes/{quote.id}/pl-summary").json()
        assert summary["installation_labour_cost"] == "50.00"
        assert summary["materials_cost"] == "0.00"
        assert summary["total_install_minutes"] == 600

    def test_patch_updates_summary(self, client, quote):
        created = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "third_party", "description": "Welder", "unit_cost": "300", "total_cost": "300",
        }).json()
        r = client.patch(f"/quotes/{quote.id}/costs/{created['id']}", json={"total_cost": "345.60"})
        assert r.status_code == 200
        assert r.json()["total_cost"] == "345.60"
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["third_party_cost"] == "345.60"

    def test_patch_cannot_clear_total(self, client, quote):
        created = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "third_party", "description": "Welder", "unit_cost": "300", "total_cost": "300",
        }).json()
        r = client.patch(f"/quotes/{quote.id}/costs/{created['id']}", json={"total_cost": None})
        assert r.status_code == 422

    def test_labour_cost_defaults_from_rate_card(self, client, db, quote, users):
        staff = users["installer"]
        db.add(StaffRateCard(user_id=staff.id, rate_type="installation", hourly_rate=D("55.00")))
        db.commit()
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "install_labour", "description": "Install", "quantity": "1.5", "staff_id": staff.id,
        })
        assert r.status_code == 200, r.text
        assert r.json()["unit_cost"] == "55.00"
        assert r.json()["total_cost"] == "82.50"

    def test_unknown_staff_member(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "install_labour", "description": "Install", "staff_id": "ghost", "total_cost": "1",
            "unit_cost": "1",
        })
        assert r.status_code == 422

    def test_unknown_quote_is_404(self, client):
        r = client.post("/quotes/nope/costs", json={
            "category": "materials", "description": "Posts", "unit_cost": "1", "total_cost": "1",
        })
        assert r.status_code == 404
        assert client.get("/quotes/nope/pl-summary").status_code == 404
        assert client.post("/quotes/nope/pl-summary/recalculate").status_code == 404

    def test_record_of_another_quote_is_404(self, client, quote, make_quote):
        other = make_quote()
        created = client.post(f"/quotes/{other.id}/costs", json={
            "category": "materials", "description": "Posts", "unit_cost": "1", "total_cost": "1",
        }).json()
        assert client.get(f"/quotes/{quote.id}/costs/{created['id']}").status_code == 404
        assert client.delete(f"/quotes/{quote.id}/costs/{created['id']}").status_code == 404

    def test_archived_quote_is_409(self, client, make_quote):
        archived = make_quote(status="archived")
        r = client.post(f"/quotes/{archived.id}/costs", json={
            "category": "materials", "description": "Posts", "unit_cost": "1", "total_cost": "1",
        })
        assert r.status_code == 409

    def test_mutations_are_audited_and_published(self, client, db, quote):
        created = client.post(f"/quotes/{quote.id}/costs", json={
            "category": "materials", "description": "Posts", "unit_cost": "1", "total_cost": "1",
        }).json()
        actions = [a.action for a in db.query(AuditLog).filter(AuditLog.entity_id == created["id"]).all()]
        assert actions == ["costing.cost_component.create"]
        topics = {e.topic for e in db.query(OutboxEvent).all()}
        assert "costing.cost_component.created" in topics
        assert "pl_summary.recalculated" in topics


class TestJobs:
    def test_job_costs_inherit_quote(self, client, quote, make_job):
        job = make_job(quote)
        r = client.post(f"/jobs/{job.id}/costs", json={
            "category": "third_party", "description": "Powder coat", "unit_cost": "410", "total_cost": "410",
        })
        assert r.status_code == 200, r.text
        assert r.json()["quote_id"] == quote.id
        assert r.json()["job_id"] == job.id
        assert [c["id"] for c in client.get(f"/jobs/{job.id}/costs").json()] == [r.json()["id"]]
        summary = client.get(f"/jobs/{job.id}/pl-summary").json()
        assert summary["quote_id"] == quote.id
        assert summary["job_id"] == job.id
        assert summary["third_party_cost"] == "410.00"

    def test_job_trip_and_admin_time(self, client, quote, make_job, users):
        job = make_job(quote)
        r = client.post(f"/jobs/{job.id}/trips", json={"trip_type": "post_install", "travel_cost_total": "22.00"})
        assert r.status_code == 200, r.text
        assert r.json()["staff_id"] == users["sales"].id
        r = client.post(f"/jobs/{job.id}/admin-time", json={"activity_type": "scheduling", "duration_minutes": 15,
                                                            "total_cost": "10.00"})
        assert r.status_code == 200, r.text
        assert len(client.get(f"/jobs/{job.id}/trips").json()) == 1
        assert len(client.get(f"/jobs/{job.id}/admin-time").json()) == 1
        summary = client.post(f"/jobs/{job.id}/pl-summary/recalculate").json()
        assert summary["total_cost"] == "32.00"
        assert summary["total_admin_minutes"] == 15

    def test_job_opened_after_summary_was_cached(self, client, quote, make_job):
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["job_id"] is None
        job = make_job(quote)
        summary = client.get(f"/jobs/{job.id}/pl-summary").json()
        assert summary["quote_id"] == quote.id
        assert summary["job_id"] == job.id

    def test_unknown_job_is_404(self, client):
        assert client.get("/jobs/nope/pl-summary").status_code == 404
        assert client.post("/jobs/nope/trips", json={"trip_type": "warranty"}).status_code == 404


class TestTripsAndAdminTime:
    def test_trip_lifecycle(self, client, quote, users):
        staff = users["installer"]
        trip = client.post(f"/quotes/{quote.id}/trips", json={
            "trip_type": "site_quote", "staff_id": staff.id, "scheduled_date": "2026-03-04T08:00:00+10:00",
            "duration_minutes": 30, "fuel_cost": "14.00", "travel_cost_total": "39.00",
        }).json()
        assert trip["status"] == "not_started"
        assert trip["scheduled_date"].startswith("2026-03-03T22:00:00")
        r = client.patch(f"/quotes/{quote.id}/trips/{trip['id']}", json={"status": "completed", "travel_cost_total": "41.00"})
        assert r.status_code == 200
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["travel_cost"] == "41.00"
        assert [t["id"] for t in client.get(f"/staff/{staff.id}/trips").json()] == [trip["id"]]
        assert client.delete(f"/quotes/{quote.id}/trips/{trip['id']}").status_code == 200
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["actual_trip_count"] == 0

    def test_trip_cost_defaults_from_travel_rate(self, client, db, quote, users):
        staff = users["installer"]
        db.add(StaffRateCard(user_id=staff.id, rate_type="travel", hourly_rate=D("36.00")))
        db.commit()
        trip = client.post(f"/quotes/{quote.id}/trips", json={
            "trip_type": "gate_install", "staff_id": staff.id, "duration_minutes": 45, "fuel_cost": "10.00",
        }).json()
        assert trip["travel_cost_total"] == "37.00"

    def test_bad_trip_status(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/trips", json={"trip_type": "site_quote", "status": "lost"})
        assert r.status_code == 422

    def test_admin_time_lifecycle(self, client, quote, users):
        entry = client.post(f"/quotes/{quote.id}/admin-time", json={
            "activity_type": "client_call", "duration_minutes": 12, "hourly_rate": "50.00",
        }).json()
        assert entry["staff_id"] == users["sales"].id
        assert entry["total_cost"] == "10.00"
        r = client.patch(f"/quotes/{quote.id}/admin-time/{entry['id']}", json={"duration_minutes": 24, "total_cost": "20.00"})
        assert r.status_code == 200
        summary = client.get(f"/quotes/{quote.id}/pl-summary").json()
        assert summary["admin_cost"] == "20.00"
        assert summary["total_admin_minutes"] == 24
        assert len(client.get(f"/staff/{users['sales'].id}/admin-time").json()) == 1
        assert client.delete(f"/quotes/{quote.id}/admin-time/{entry['id']}").status_code == 200
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["admin_cost"] == "0.00"

    def test_admin_time_needs_duration(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/admin-time", json={"activity_type": "invoicing"})
        assert r.status_code == 422


class TestGroundConditions:
    def test_lifecycle(self, client, quote):
        g = client.post(f"/quotes/{quote.id}/ground-conditions", json={
            "condition": "rocky", "affected_length_meters": "12.5", "additional_cost": "480.00",
            "additional_time_minutes": 90,
        })
        assert g.status_code == 200, g.text
        gid = g.json()["id"]
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["ground_conditions_cost"] == "480.00"
        r = client.patch(f"/quotes/{quote.id}/ground-conditions/{gid}", json={"additional_cost": "500.00"})
        assert r.status_code == 200
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["ground_conditions_cost"] == "500.00"
        assert len(client.get(f"/quotes/{quote.id}/ground-conditions").json()) == 1
        assert client.delete(f"/quotes/{quote.id}/ground-conditions/{gid}").status_code == 200
        assert client.get(f"/quotes/{quote.id}/pl-summary").json()["ground_conditions_cost"] == "0.00"

    def test_unknown_condition(self, client, quote):
        r = client.post(f"/quotes/{quote.id}/ground-conditions", json={"condition": "lava"})
        assert r.status_code == 422


class TestSummary:
    def test_computed_on_first_read(self, client, make_quote):
        q = make_quote(total_amount="0")
        summary = client.get(f"/quotes/{q.id}/pl-summary").json()
        assert summary["total_revenue"] == "0.00"
        assert summary["profit_margin_percent"] == "0.00"
        assert summary["is_supply_only"] is True

    def test_manual_recalculate_is_idempotent(self, client, quote, users):
        post_scenario_a(client, quote.id, users["installer"].id)
        first = client.post(f"/quotes/{quote.id}/pl-summary/recalculate").json()
        second = client.post(f"/quotes/{quote.id}/pl-summary/recalculate").json()
        for key in first:
            if key not in ("last_calculated_at", "version"):
                assert first[key] == second[key], key


class TestRateCardsApi:
    def test_writes_need_admin(self, client, auth, users):
        body = {"user_id": users["installer"].id, "rate_type": "installation", "hourly_rate": "48.00"}
        assert client.post("/rate-cards", json=body).status_code == 403
        auth.login(users["admin"])
        r = client.post("/rate-cards", json=body)
        assert r.status_code == 200, r.text
        card = r.json()
        assert card["hourly_rate"] == "48.00"

        r = client.patch(f"/rate-cards/{card['id']}", json={"hourly_rate": "50.00"})
        assert r.json()["hourly_rate"] == "50.00"
        resolved = client.get("/rate-cards/resolve", params={
            "user_id": users["installer"].id, "rate_type": "installation",
        }).json()
        assert resolved["rate_card"]["id"] == card["id"]
        assert client.delete(f"/rate-cards/{card['id']}").json()["deleted"] is True
        assert client.get("/rate-cards").json() == []

    def test_resolve_without_card(self, client, users):
        r = client.get("/rate-cards/resolve", params={"user_id": users["installer"].id, "rate_type": "travel"})
        assert r.status_code == 200
        assert r.json() == {"rate_card": None}

    def test_bad_window(self, client, auth, users):
        auth.login(users["admin"])
        r = client.post("/rate-cards", json={
            "user_id": users["installer"].id, "rate_type": "admin", "hourly_rate": "30",
            "effective_from": "2026-07-01T00:00:00", "effective_until": "2026-01-01T00:00:00",
        })
        assert r.status_code == 422

    def test_unknown_card(self, client, auth, users):
        auth.login(users["admin"])
        assert client.patch("/rate-cards/nope", json={"hourly_rate": "1"}).status_code == 404


class TestAccess:
    def test_anonymous_is_401(self, client, auth, quote):
        auth.logout()
        r = client.get(f"/quotes/{quote.id}/pl-summary")
        assert r.status_code == 401
        assert r.headers.get("X-Request-Id")

    def test_trade_client_is_403(self, client, auth, users, quote, db):
        auth.login(users["trade"])
        assert client.get(f"/quotes/{quote.id}/costs").status_code == 403
        denied = db.query(AuditLog).filter(AuditLog.action == "http.request").all()
        assert [a.status_code for a in denied] == [403]

    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}
