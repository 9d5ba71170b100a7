"""
Request routing API tests.

Covers:
    - Roster endpoints (create, filters, validation)
    - Submission and detail with per-actor permissions
    - Full lifecycle over HTTP: platoon → company → battalion → commander → file
    - Records dashboard grouping
    - Error mapping: 400 / 403 / 404 / 409 / 415 / 422
    - Health probes and request timing headers
"""

UNIT_UIC = "M12345"

RETENTION = {
    "ssic": "1000",
    "ssic_nomenclature": "Military Personnel",
    "ssic_bucket": "1000",
    "ssic_bucket_title": "Military Personnel",
    "is_permanent": False,
    "retention_value": 3,
    "retention_unit": "years",
    "cutoff_trigger": "CALENDAR_YEAR",
}


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _submit(client, **extra):
    payload = {
        "actor_id": "u-owner",
        "subject": "Request mast",
        "due_date": "2024-05-01",
        "document_ids": ["doc-1"],
        "retention": RETENTION,
    }
    payload.update(extra)
    res = client.post("/api/v1/requests", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _transition(client, request_id, action, actor_id, **extra):
    return client.post(
        f"/api/v1/requests/{request_id}/transition",
        json={"action": action, "actor_id": actor_id, **extra},
    )


def _approved(client):
    """Walk a fresh request up to commander approval; returns its id."""
    rid = _submit(client)["id"]
    for action, actor, extra in [
        ("approve", "u-plt", {}),
        ("approve", "u-co", {}),
        ("route_section", "u-staff", {"route_section": "S-1"}),
        ("forward_to_commander", "u-staff", {}),
        ("commander_approve", "u-cmdr", {"comment": "Concur"}),
    ]:
        res = _transition(client, rid, action, actor, **extra)
        assert res.status_code == 200, res.get_json()
    return rid


# ═════════════════════════════════════════════════════════════════════════════
# Roster
# ═════════════════════════════════════════════════════════════════════════════


class TestUsers:
    def test_roster_created(self, roster):
        assert roster["u-co"]["platoon"] is None
        assert roster["u-cmdr"]["display_name"] == "LtCol Nguyen, Chris T"

    def test_list_filters(self, client, roster):
        res = client.get(f"/api/v1/users?unit_uic={UNIT_UIC}&role=commander")
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == "u-cmdr"

    def test_duplicate_id(self, client, roster):
        res = client.post("/api/v1/users", json={"id": "u-owner", "unit_uic": UNIT_UIC})
        assert res.status_code == 409

    def test_unknown_role(self, client):
        res = client.post("/api/v1/users", json={"role": "GENERAL", "unit_uic": UNIT_UIC})
        assert res.status_code == 400
        assert "COMMANDER" in res.get_json()["details"]["allowed"]

    def test_unit_required(self, client):
        res = client.post("/api/v1/users", json={"unit_uic": "N/A"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


# ═════════════════════════════════════════════════════════════════════════════
# Submission & detail
# ═════════════════════════════════════════════════════════════════════════════


class TestSubmitAndDetail:
    def test_submit(self, client, roster):
        data = _submit(client)
        assert data["current_stage"] == "PLATOON_REVIEW"
        assert data["stage_label"] == "Platoon"
        assert data["version"] == 1
        assert data["due_date"] == "2024-05-01"
        assert data["retention"]["ssic"] == "1000"
        assert data["disposal"] == {"year": "Unknown", "date": "N/A", "disposal_on": None}
        assert data["disposal_summary"] == "TEMPORARY: 3 years after end of calendar year"
        assert data["permissions"]["can_edit"] is True
        assert data["permissions"]["actions"] == []

    def test_detail_permissions_for_reviewer(self, client, roster):
        rid = _submit(client)["id"]
        res = client.get(f"/api/v1/requests/{rid}?actor_id=u-plt")
        assert res.status_code == 200
        perms = res.get_json()["permissions"]
        assert perms["actions"] == ["approve", "return"]
        assert perms["can_edit"] is False

    def test_detail_without_actor(self, client, roster):
        rid = _submit(client)["id"]
        data = client.get(f"/api/v1/requests/{rid}").get_json()
        assert "permissions" not in data
        assert data["available_actions"] == ["approve", "return"]

    def test_missing_actor(self, client, roster):
        res = client.post("/api/v1/requests", json={"subject": "x"})
        assert res.status_code == 400

    def test_unknown_actor(self, client, roster):
        res = client.post("/api/v1/requests", json={"actor_id": "ghost", "subject": "x"})
        assert res.status_code == 404
        assert res.get_json()["error"] == "User not found"

    def test_bad_due_date(self, client, roster):
        res = client.post("/api/v1/requests", json={"actor_id": "u-owner", "subject": "x", "due_date": "soon"})
        assert res.status_code == 400

    def test_partial_retention(self, client, roster):
        res = client.post("/api/v1/requests", json={
            "actor_id": "u-owner", "subject": "x", "retention": {"ssic": "1000"},
        })
        assert res.status_code == 422
        assert "is_permanent" in res.get_json()["details"]

    def test_not_json(self, client, roster):
        res = client.post("/api/v1/requests", data="subject=x", content_type="text/plain")
        assert res.status_code == 415

    def test_request_not_found(self, client):
        assert client.get("/api/v1/requests/nope").status_code == 404

    def test_list_by_stage(self, client, roster):
        _submit(client)
        res = client.get(f"/api/v1/requests?unit_uic={UNIT_UIC}&stage=PLATOON_REVIEW")
        assert res.get_json()["total"] == 1
        assert client.get("/api/v1/requests?stage=COMPANY_REVIEW").get_json()["total"] == 0

    def test_list_unknown_stage(self, client):
        assert client.get("/api/v1/requests?stage=LIMBO").status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_full_flow_to_filing(self, client, roster):
        rid = _approved(client)

        detail = client.get(f"/api/v1/requests/{rid}?actor_id=u-staff").get_json()
        assert detail["current_stage"] == "BATTALION_REVIEW"
        assert detail["route_section"] == "S-1"
        assert detail["final_status"] == "Approved"
        assert detail["permissions"]["can_file"] is True
        assert "archive" in detail["permissions"]["actions"]
        assert [a["kind"] for a in detail["activity"]] == [
            "submit", "approve", "approve", "route_section", "forward_to_commander", "commander_approve",
        ]

        res = client.post(f"/api/v1/requests/{rid}/file", json={"actor_id": "u-staff"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["request"]["final_status"] == "Filed"
        assert body["request"]["filed_at"] is not None
        assert body["disposal"]["year"].isdigit()

        again = client.post(f"/api/v1/requests/{rid}/file", json={"actor_id": "u-staff"})
        assert again.status_code == 400

    def test_can_file_requires_authority(self, client, roster):
        res = client.post("/api/v1/users", json={"id": "u-outsider", "unit_uic": "M99999", "role": "MEMBER"})
        assert res.status_code == 201
        rid = _approved(client)

        outsider = client.get(f"/api/v1/requests/{rid}?actor_id=u-outsider").get_json()
        assert outsider["permissions"]["can_file"] is False
        staff = client.get(f"/api/v1/requests/{rid}?actor_id=u-staff").get_json()
        assert staff["permissions"]["can_file"] is True

        res = client.post(f"/api/v1/requests/{rid}/file", json={"actor_id": "u-outsider"})
        assert res.status_code == 403

    def test_invalid_transition(self, client, roster):
        rid = _submit(client)["id"]
        res = _transition(client, rid, "archive", "u-staff")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_forbidden(self, client, roster):
        rid = _submit(client)["id"]
        res = _transition(client, rid, "approve", "u-owner")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_stale_version(self, client, roster):
        rid = _submit(client)["id"]
        assert _transition(client, rid, "approve", "u-plt", version=1).status_code == 200
        res = _transition(client, rid, "approve", "u-co", version=1)
        assert res.status_code == 409
        assert res.get_json()["details"] == {"expected_version": 1, "current_version": 2}

    def test_bad_version(self, client, roster):
        rid = _submit(client)["id"]
        assert _transition(client, rid, "approve", "u-plt", version="two").status_code == 400

    def test_missing_action(self, client, roster):
        rid = _submit(client)["id"]
        res = client.post(f"/api/v1/requests/{rid}/transition", json={"actor_id": "u-plt"})
        assert res.status_code == 400

    def test_intent_key_replay(self, client, roster):
        rid = _submit(client)["id"]
        first = _transition(client, rid, "approve", "u-plt", intent_key="click-1").get_json()
        second = _transition(client, rid, "approve", "u-plt", intent_key="click-1").get_json()
        assert first["duplicate"] is False
        assert second["duplicate"] is True
        assert len(second["request"]["activity"]) == 2

    def test_return_and_resubmit(self, client, roster):
        rid = _submit(client)["id"]
        res = _transition(client, rid, "return", "u-plt", comment="Needs signature")
        assert res.get_json()["new_stage"] == "ORIGINATOR_REVIEW"

        res = client.post(f"/api/v1/requests/{rid}/resubmit", json={"actor_id": "u-owner"})
        assert res.status_code == 200
        assert res.get_json()["new_stage"] == "PLATOON_REVIEW"

    def test_edit_and_delete(self, client, roster):
        rid = _submit(client)["id"]
        res = client.put(f"/api/v1/requests/{rid}", json={"actor_id": "u-owner", "notes": "Updated"})
        assert res.status_code == 200
        assert res.get_json()["notes"] == "Updated"

        assert client.put(f"/api/v1/requests/{rid}", json={"actor_id": "u-plt", "notes": "x"}).status_code == 403

        res = client.delete(f"/api/v1/requests/{rid}?actor_id=u-owner")
        assert res.status_code == 200
        assert client.get(f"/api/v1/requests/{rid}").status_code == 404

    def test_delete_after_approval_blocked(self, client, roster):
        rid = _approved(client)
        assert client.delete(f"/api/v1/requests/{rid}?actor_id=u-owner").status_code == 400

    def test_add_documents(self, client, roster):
        rid = _submit(client)["id"]
        res = client.post(f"/api/v1/requests/{rid}/documents",
                          json={"actor_id": "u-plt", "document_ids": ["doc-2"]})
        assert res.status_code == 200
        assert res.get_json()["document_ids"] == ["doc-1", "doc-2"]

        res = client.post(f"/api/v1/requests/{rid}/documents", json={"actor_id": "u-plt", "document_ids": []})
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Records dashboard
# ═════════════════════════════════════════════════════════════════════════════


class TestRecords:
    def test_grouped_by_year_and_bucket(self, client, roster):
        temp = _approved(client)
        client.post(f"/api/v1/requests/{temp}/file", json={"actor_id": "u-staff"})
        perm = _approved(client)
        client.post(f"/api/v1/requests/{perm}/file", json={
            "actor_id": "u-owner",
            "retention": {"ssic": "5211", "is_permanent": True, "ssic_bucket": "5000"},
        })
        _submit(client)

        originator = client.get(f"/api/v1/records?unit_uic={UNIT_UIC}").get_json()
        assert originator["total"] == 2
        assert [y["year"] for y in originator["years"]][0] == "Permanent"

        command = client.get(f"/api/v1/records?unit_uic={UNIT_UIC}&view=command").get_json()
        years = [y["year"] for y in command["years"]]
        assert years[-1] == "Permanent"
        row = command["years"][0]["buckets"][0]["records"][0]
        assert row["id"] == temp
        assert row["retention"] == "3 years"
        assert row["cutoff"] == "End of Calendar Year"

    def test_unknown_view(self, client):
        assert client.get("/api/v1/records?view=sideways").status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.headers.get("X-Request-ID")

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
