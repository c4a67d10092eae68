import pytest

from app.core.exceptions import InvalidPayloadError, InvalidTransitionError, PermissionDeniedError
from app.core.security import Role
from app.workflows import (
    APPLICATION_MACHINE,
    COMPANY_MACHINE,
    INTERNSHIP_MACHINE,
    LOGBOOK_MACHINE,
)
from app.utils.constants import (
    APPLICATION_STATUSES,
    COMPANY_STATUSES,
    INTERNSHIP_STATUSES,
    LOGBOOK_STATUSES,
)


def test_application_happy_path():
    assert APPLICATION_MACHINE.resolve("mentor_approve", "pending", Role.MENTOR).target == "mentor_approved"
    assert APPLICATION_MACHINE.resolve("shortlist", "mentor_approved", Role.COMPANY).target == "shortlisted"
    assert APPLICATION_MACHINE.resolve("accept", "shortlisted", Role.COMPANY).target == "accepted"


def test_terminal_states_refuse_every_action():
    for state in ("accepted", "rejected", "withdrawn", "mentor_rejected"):
        assert APPLICATION_MACHINE.allowed_actions(state) == []
        with pytest.raises(InvalidTransitionError):
            APPLICATION_MACHINE.resolve("withdraw", state, Role.STUDENT)

    with pytest.raises(InvalidTransitionError):
        LOGBOOK_MACHINE.resolve("mentor_approve", "completed", Role.MENTOR)
    with pytest.raises(InvalidTransitionError):
        COMPANY_MACHINE.resolve("verify", "suspended", Role.ADMIN)


def test_wrong_state_is_checked_before_role():
    # A student asking to accept from pending hits the state check first
    with pytest.raises(InvalidTransitionError):
        APPLICATION_MACHINE.resolve("accept", "pending", Role.STUDENT)

    with pytest.raises(PermissionDeniedError):
        APPLICATION_MACHINE.resolve("accept", "shortlisted", Role.STUDENT)


def test_role_is_checked_before_required_fields():
    with pytest.raises(PermissionDeniedError):
        APPLICATION_MACHINE.resolve("mentor_reject", "pending", Role.COMPANY)

    with pytest.raises(InvalidPayloadError) as excinfo:
        APPLICATION_MACHINE.resolve("mentor_reject", "pending", Role.MENTOR, {"comments": "  "})
    assert excinfo.value.details["missing"] == ["comments"]

    t = APPLICATION_MACHINE.resolve("mentor_reject", "pending", Role.MENTOR, {"comments": "Incomplete CV"})
    assert t.target == "mentor_rejected"


def test_unknown_action_is_an_invalid_transition():
    with pytest.raises(InvalidTransitionError):
        INTERNSHIP_MACHINE.resolve("publish", "draft", Role.COMPANY)


def test_logbook_revision_loop():
    assert LOGBOOK_MACHINE.resolve(
        "mentor_request_revision", "pending_mentor_review", Role.MENTOR, {"comments": "More detail"}
    ).target == "needs_revision"
    assert LOGBOOK_MACHINE.resolve("resubmit", "needs_revision", Role.STUDENT).target == "submitted"
    assert LOGBOOK_MACHINE.resolve("mentor_approve", "submitted", Role.MENTOR).target == "pending_company_review"
    assert LOGBOOK_MACHINE.resolve(
        "company_feedback", "pending_company_review", Role.COMPANY, {"comments": "Good week"}
    ).target == "approved"


def test_internship_and_company_tables():
    assert INTERNSHIP_MACHINE.resolve("reject", "pending_approval", Role.ADMIN, {"reason": "Vague"}).target == "cancelled"
    assert INTERNSHIP_MACHINE.resolve("close", "approved", Role.ADMIN).target == "closed"
    assert sorted(INTERNSHIP_MACHINE.allowed_actions("approved", Role.COMPANY)) == ["cancel", "close"]

    assert COMPANY_MACHINE.resolve("verify", "pending_verification", Role.ADMIN).target == "verified"
    with pytest.raises(InvalidPayloadError):
        COMPANY_MACHINE.resolve("suspend", "verified", Role.ADMIN)
    with pytest.raises(PermissionDeniedError):
        COMPANY_MACHINE.resolve("verify", "pending_verification", Role.MENTOR)


@pytest.mark.parametrize(
    "machine, statuses",
    [
        (APPLICATION_MACHINE, APPLICATION_STATUSES),
        (LOGBOOK_MACHINE, LOGBOOK_STATUSES),
        (INTERNSHIP_MACHINE, INTERNSHIP_STATUSES),
        (COMPANY_MACHINE, COMPANY_STATUSES),
    ],
)
def test_machines_only_use_known_statuses(machine, statuses):
    for t in machine.transitions.values():
        assert set(t.sources) <= set(statuses)
        assert t.target in statuses
    assert machine.terminal_states <= set(statuses)
