"""
Stage engine tests.

Covers:
    - Linear chain navigation (next_stage / prev_stage clamping)
    - Transition table validation and target stages
    - apply_transition: activity append, comment trimming, routing fields
    - Commander decisions landing back at battalion in the last section
    - Requester predicates: edit, delete, file, return-to-lower, archive-only
    - Stage labels
    - can_transition with actor authority
"""

from dataclasses import replace
from datetime import UTC, datetime

import pytest

from edms.core.domain import RequestRecord, RoutingChange, UserRecord
from edms.services.stage_engine import (
    LINEAR_STAGES,
    REQUEST_TRANSITIONS,
    Stage,
    apply_transition,
    available_actions,
    can_delete_request,
    can_file_request,
    can_requester_edit,
    can_return_to_lower_level,
    can_transition,
    describe_action,
    find_intent,
    format_stage_label,
    get_return_target_stage,
    has_commander_clearance,
    is_returned,
    last_battalion_section,
    next_stage,
    originator_archive_only,
    prev_stage,
    validate_transition,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

OWNER = UserRecord(id="u-owner", unit_uic="M12345", company="Alpha", platoon="1st Platoon",
                   rank="LCpl", first_name="Jane", last_name="Doe")
PLT = UserRecord(id="u-plt", role="PLATOON_REVIEWER", unit_uic="M12345", company="Alpha",
                 platoon="1st Platoon", rank="SSgt", first_name="Sam", last_name="Ortiz")
STAFF = UserRecord(id="u-staff", unit_uic="M12345", is_command_staff=True,
                   rank="GySgt", first_name="Ana", last_name="Reyes")
CMDR = UserRecord(id="u-cmdr", role="COMMANDER", unit_uic="M12345",
                  rank="LtCol", first_name="Chris", last_name="Nguyen", mi="T")


def _request(stage=Stage.PLATOON_REVIEW.value, **kw):
    return RequestRecord(
        id="r-1",
        subject="Request mast",
        uploaded_by_id=OWNER.id,
        current_stage=stage,
        created_at=NOW,
        unit_uic="M12345",
        **kw,
    )


def _move(record, actor, action, **kw):
    check = validate_transition(record, action)
    assert check["valid"], check["reason"]
    routing = kw.pop("routing", None)
    return apply_transition(record, actor, check["to"], action, routing=routing,
                            kind=action, now=NOW, **kw)


def _cleared(stage=Stage.BATTALION_REVIEW.value):
    """Request that went through battalion section S-1 and was approved by the commander."""
    record = _request(Stage.BATTALION_REVIEW.value)
    record = _move(record, STAFF, "route_section", routing=RoutingChange("S-1"))
    record = _move(record, STAFF, "forward_to_commander", routing=RoutingChange(None))
    record = _move(record, CMDR, "commander_approve", routing=RoutingChange("S-1"))
    return record.evolve(current_stage=stage)


# ═════════════════════════════════════════════════════════════════════════════
# Linear chain
# ═════════════════════════════════════════════════════════════════════════════


class TestLinearChain:
    def test_next_stage_walks_the_chain(self):
        assert next_stage("PLATOON_REVIEW") == "COMPANY_REVIEW"
        assert next_stage("COMPANY_REVIEW") == "BATTALION_REVIEW"
        assert next_stage("BATTALION_REVIEW") == "COMMANDER_REVIEW"
        assert next_stage("COMMANDER_REVIEW") == "ARCHIVED"

    def test_archived_is_terminal(self):
        assert next_stage("ARCHIVED") == "ARCHIVED"

    def test_prev_stage_clamps_at_platoon(self):
        assert prev_stage("PLATOON_REVIEW") == "PLATOON_REVIEW"
        assert prev_stage("COMMANDER_REVIEW") == "BATTALION_REVIEW"

    def test_unknown_stage_treated_as_platoon(self):
        assert next_stage("NOT_A_STAGE") == "PLATOON_REVIEW"
        assert prev_stage(None) == "PLATOON_REVIEW"

    def test_accepts_enum_members(self):
        assert next_stage(Stage.COMPANY_REVIEW) == "BATTALION_REVIEW"

    def test_linear_stages_exclude_side_branches(self):
        assert "INSTALLATION_REVIEW" not in LINEAR_STAGES
        assert "ORIGINATOR_REVIEW" not in LINEAR_STAGES


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestValidateTransition:
    def test_approve_from_platoon_goes_to_company(self):
        check = validate_transition(_request(), "approve")
        assert check == {"valid": True, "from": "PLATOON_REVIEW", "to": "COMPANY_REVIEW", "reason": None}

    def test_return_from_platoon_goes_to_originator(self):
        assert validate_transition(_request(), "return")["to"] == "ORIGINATOR_REVIEW"

    def test_return_from_commander_goes_to_battalion(self):
        check = validate_transition(_request("COMMANDER_REVIEW"), "return")
        assert check["to"] == "BATTALION_REVIEW"

    def test_route_section_keeps_stage(self):
        assert validate_transition(_request("BATTALION_REVIEW"), "route_section")["to"] == "BATTALION_REVIEW"

    def test_unknown_action(self):
        check = validate_transition(_request(), "teleport")
        assert check["valid"] is False
        assert "Unknown action" in check["reason"]

    def test_wrong_from_stage(self):
        check = validate_transition(_request("ARCHIVED"), "approve")
        assert check["valid"] is False
        assert "ARCHIVED" in check["reason"]

    def test_archive_requires_commander_clearance(self):
        check = validate_transition(_request("BATTALION_REVIEW"), "archive")
        assert check["valid"] is False
        assert validate_transition(_cleared(), "archive")["valid"] is True

    def test_return_to_lower_requires_clearance(self):
        assert validate_transition(_request("BATTALION_REVIEW"), "return_to_lower")["valid"] is False
        check = validate_transition(_cleared(), "return_to_lower")
        assert check["valid"] is True
        assert check["to"] == "COMPANY_REVIEW"

    def test_filed_request_only_archives(self):
        filed = _cleared().evolve(filed_at=NOW)
        assert available_actions(filed) == ["archive"]

    def test_resubmit_blocked_after_clearance(self):
        cleared = _cleared("ORIGINATOR_REVIEW")
        assert validate_transition(cleared, "resubmit")["valid"] is False

    def test_every_action_has_from_list(self):
        for action, rule in REQUEST_TRANSITIONS.items():
            assert rule["from"], action

    def test_available_actions_at_platoon(self):
        assert available_actions(_request()) == ["approve", "return"]


# ═════════════════════════════════════════════════════════════════════════════
# apply_transition
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyTransition:
    def test_appends_exactly_one_entry(self):
        before = _request()
        after = apply_transition(before, PLT, "COMPANY_REVIEW", "Approved", "  looks good ",
                                 kind="approve", now=NOW)
        assert len(after.activity) == len(before.activity) + 1
        assert before.activity == ()
        entry = after.activity[-1]
        assert entry.actor == "SSgt Ortiz, Sam"
        assert entry.actor_id == "u-plt"
        assert entry.comment == "looks good"
        assert entry.from_stage == "PLATOON_REVIEW"
        assert entry.to_stage == "COMPANY_REVIEW"
        assert after.current_stage == "COMPANY_REVIEW"

    def test_blank_comment_dropped(self):
        after = apply_transition(_request(), PLT, "COMPANY_REVIEW", "Approved", "   ",
                                 kind="approve", now=NOW)
        assert after.activity[-1].comment is None

    def test_routing_records_sections(self):
        record = _request("BATTALION_REVIEW", route_section="S-1")
        after = apply_transition(record, STAFF, "BATTALION_REVIEW", "Routed",
                                 routing=RoutingChange("S-4"), kind="route_section", now=NOW)
        entry = after.activity[-1]
        assert (entry.from_section, entry.to_section) == ("S-1", "S-4")
        assert after.route_section == "S-4"

    def test_no_routing_keeps_section(self):
        record = _request("BATTALION_REVIEW", route_section="S-1")
        after = apply_transition(record, STAFF, "BATTALION_REVIEW", "Note", kind="edit", now=NOW)
        assert after.route_section == "S-1"
        assert after.activity[-1].to_section is None

    def test_commander_approve_stamps_date_once(self):
        cleared = _cleared("COMMANDER_REVIEW")
        first = cleared.commander_approval_date
        assert first == NOW
        later = datetime(2024, 4, 1, tzinfo=UTC)
        again = apply_transition(cleared, CMDR, "BATTALION_REVIEW", "Approved by Commander",
                                 kind="commander_approve", now=later)
        assert again.commander_approval_date == first

    def test_intent_key_recorded(self):
        after = apply_transition(_request(), PLT, "COMPANY_REVIEW", "Approved",
                                 kind="approve", now=NOW, intent_key="k-1")
        assert find_intent(after, "k-1") is after.activity[-1]
        assert find_intent(after, "k-2") is None
        assert find_intent(after, None) is None


class TestCommanderDecision:
    def test_lands_in_last_battalion_section(self):
        record = _cleared()
        assert record.current_stage == "BATTALION_REVIEW"
        assert record.route_section == "S-1"
        assert has_commander_clearance(record)

    def test_last_battalion_section_skips_command_sections(self):
        record = _request("BATTALION_REVIEW")
        record = _move(record, STAFF, "route_section", routing=RoutingChange("S-3"))
        record = _move(record, STAFF, "route_section", routing=RoutingChange("XO"))
        assert last_battalion_section(record, ("CO", "XO", "SGTMAJ")) == "S-3"
        assert last_battalion_section(record) == "XO"

    def test_last_battalion_section_none_without_history(self):
        assert last_battalion_section(_request()) is None

    def test_describe_commander_reject(self):
        label = describe_action(_request("COMMANDER_REVIEW"), "commander_reject", "BATTALION_REVIEW")
        assert label == "Rejected by Commander - requires action"


# ═════════════════════════════════════════════════════════════════════════════
# Predicates
# ═════════════════════════════════════════════════════════════════════════════


class TestRequesterPredicates:
    def test_owner_can_edit_during_unit_review(self):
        for stage in ("PLATOON_REVIEW", "COMPANY_REVIEW", "BATTALION_REVIEW"):
            assert can_requester_edit(_request(stage), OWNER.id)

    def test_non_owner_cannot_edit(self):
        assert not can_requester_edit(_request(), PLT.id)
        assert not can_requester_edit(_request(), None)

    def test_edit_locked_after_clearance(self):
        assert not can_requester_edit(_cleared(), OWNER.id)

    def test_edit_at_originator_only_when_returned(self):
        returned = _move(_request(), PLT, "return")
        assert returned.current_stage == "ORIGINATOR_REVIEW"
        assert is_returned(returned)
        assert can_requester_edit(returned, OWNER.id)
        assert not can_requester_edit(_request("ORIGINATOR_REVIEW"), OWNER.id)

    def test_delete_rules(self):
        assert can_delete_request(_request(), OWNER.id)
        assert not can_delete_request(_request(), PLT.id)
        assert not can_delete_request(_cleared(), OWNER.id)

    def test_file_requires_clearance_and_only_once(self):
        assert not can_file_request(_request("BATTALION_REVIEW"), STAFF.id)
        cleared = _cleared()
        assert can_file_request(cleared, STAFF.id)
        assert not can_file_request(cleared.evolve(filed_at=NOW), STAFF.id)
        assert not can_file_request(cleared, None)

    def test_return_to_lower_targets(self):
        assert get_return_target_stage("BATTALION_REVIEW") == "COMPANY_REVIEW"
        assert get_return_target_stage("PLATOON_REVIEW") is None
        assert get_return_target_stage("INSTALLATION_REVIEW") == "ORIGINATOR_REVIEW"
        assert get_return_target_stage("COMMANDER_REVIEW") is None
        assert can_return_to_lower_level(_cleared())
        assert not can_return_to_lower_level(_cleared("COMMANDER_REVIEW"))
        assert not can_return_to_lower_level(_cleared("PLATOON_REVIEW"))

    def test_originator_archive_only(self):
        assert originator_archive_only(_cleared("ORIGINATOR_REVIEW"), OWNER.id)
        assert not originator_archive_only(_request("ORIGINATOR_REVIEW"), OWNER.id)


# ═════════════════════════════════════════════════════════════════════════════
# Labels & authority
# ═════════════════════════════════════════════════════════════════════════════


class TestStageLabel:
    @pytest.mark.parametrize("stage,section,expected", [
        ("PLATOON_REVIEW", None, "Platoon"),
        ("COMPANY_REVIEW", None, "Company"),
        ("BATTALION_REVIEW", None, "Battalion"),
        ("BATTALION_REVIEW", "S-1", "S-1"),
        ("COMMANDER_REVIEW", None, "Commander"),
        ("INSTALLATION_REVIEW", "G-3", "Installation - G-3"),
        ("INSTALLATION_REVIEW", None, "Installation Commander"),
        ("HQMC_REVIEW", "MMRP", "HQMC - MMRP"),
        ("ORIGINATOR_REVIEW", None, "Originator"),
        ("ARCHIVED", None, "Archived"),
    ])
    def test_labels(self, stage, section, expected):
        assert format_stage_label(_request(stage, route_section=section)) == expected

    def test_external_uses_unit_name(self):
        record = _request("EXTERNAL_REVIEW", external_pending_unit_name="2d Bn 5th Mar")
        assert format_stage_label(record) == "2d Bn 5th Mar"


class TestCanTransition:
    def test_platoon_reviewer_in_scope(self):
        assert can_transition(_request(), PLT, "approve", OWNER)

    def test_reviewer_out_of_scope(self):
        other = replace(PLT, platoon="2nd Platoon")
        assert not can_transition(_request(), other, "approve", OWNER)

    def test_member_cannot_approve(self):
        assert not can_transition(_request(), OWNER, "approve", OWNER)

    def test_invalid_stage_is_false_even_for_holder(self):
        assert not can_transition(_request("COMMANDER_REVIEW"), STAFF, "approve", OWNER)

    def test_missing_actor(self):
        assert not can_transition(_request(), None, "approve")
