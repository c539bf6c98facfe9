import pytest

import crud
import workflow
from conftest import count_requests_for_pair
from errors import AssetUnavailable, DuplicateRequest, InvalidTransition, NotFound, Unauthorized
from models import AssetStatus, AssetUpdate, RequestStatus


def _asset_status(db, asset_id):
    return crud.find_asset(db, asset_id).status


def test_submit_creates_pending_request(db_session, make_asset):
    asset = make_asset()

    req = workflow.submit_request(db_session, asset.id, "U1", "for the demo")

    assert req.status == RequestStatus.PENDING
    assert req.requester_id == "U1"
    assert req.note == "for the demo"
    assert req.processed_by is None
    assert req.processed_at is None
    assert _asset_status(db_session, asset.id) == AssetStatus.AVAILABLE


@pytest.mark.parametrize(
    "status",
    [AssetStatus.IN_USE, AssetStatus.MAINTENANCE, AssetStatus.DAMAGED, AssetStatus.RETIRED],
)
def test_submit_requires_available_asset(db_session, make_asset, status):
    asset = make_asset()
    crud.update_asset(db_session, asset.id, AssetUpdate(status=status))

    with pytest.raises(AssetUnavailable):
        workflow.submit_request(db_session, asset.id, "U1")

    assert count_requests_for_pair(db_session, asset.id, "U1") == 0


def test_submit_unknown_asset_is_not_found(db_session):
    with pytest.raises(NotFound):
        workflow.submit_request(db_session, "missing", "U1")


def test_submit_without_identity_is_unauthorized(db_session, make_asset):
    asset = make_asset()
    with pytest.raises(Unauthorized):
        workflow.submit_request(db_session, asset.id, "  ")


def test_duplicate_active_request_is_rejected(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    with pytest.raises(DuplicateRequest):
        workflow.submit_request(db_session, asset.id, "U1")
    assert count_requests_for_pair(db_session, asset.id, "U1") == 1

    workflow.approve(db_session, req.id, "admin")
    # APPROVED is still active; the asset is no longer AVAILABLE either
    with pytest.raises((DuplicateRequest, AssetUnavailable)):
        workflow.submit_request(db_session, asset.id, "U1")
    assert count_requests_for_pair(db_session, asset.id, "U1") == 1


def test_unique_index_backs_duplicate_guard(db_session, make_asset, monkeypatch):
    asset = make_asset()
    workflow.submit_request(db_session, asset.id, "U1")

    # a check that raced and saw nothing still cannot insert a second active row
    monkeypatch.setattr(crud, "has_active_request", lambda *args, **kwargs: False)
    with pytest.raises(DuplicateRequest):
        workflow.submit_request(db_session, asset.id, "U1")

    monkeypatch.undo()
    assert count_requests_for_pair(db_session, asset.id, "U1") == 1


def test_different_requesters_may_queue_on_same_asset(db_session, make_asset):
    asset = make_asset()
    r1 = workflow.submit_request(db_session, asset.id, "U1")
    r2 = workflow.submit_request(db_session, asset.id, "U2")

    assert {r1.status, r2.status} == {RequestStatus.PENDING}
    assert [r.id for r in workflow.list_active_requests(db_session)] == [r1.id, r2.id]


def test_approve_then_complete_round_trip(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    approved = workflow.approve(db_session, req.id, "admin")
    assert approved.status == RequestStatus.APPROVED
    assert approved.processed_by == "admin"
    assert approved.processed_at is not None
    assert _asset_status(db_session, asset.id) == AssetStatus.IN_USE

    done = workflow.complete(db_session, req.id, "U1")
    assert done.status == RequestStatus.COMPLETE
    assert done.completed_at is not None
    assert done.processed_by == "admin"
    assert _asset_status(db_session, asset.id) == AssetStatus.AVAILABLE


def test_second_approve_fails_and_keeps_processing_fields(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    first = workflow.approve(db_session, req.id, "admin-a")

    with pytest.raises(InvalidTransition):
        workflow.approve(db_session, req.id, "admin-b")

    again = workflow.get_request(db_session, req.id)
    assert again.status == RequestStatus.APPROVED
    assert again.processed_by == "admin-a"
    assert again.processed_at == first.processed_at


def test_approve_rechecks_asset_and_leaves_request_pending(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    crud.update_asset(db_session, asset.id, AssetUpdate(status=AssetStatus.MAINTENANCE))

    with pytest.raises(AssetUnavailable):
        workflow.approve(db_session, req.id, "admin")

    again = workflow.get_request(db_session, req.id)
    assert again.status == RequestStatus.PENDING
    assert again.processed_by is None
    assert _asset_status(db_session, asset.id) == AssetStatus.MAINTENANCE


def test_decline_stores_reason_verbatim(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    declined = workflow.decline(db_session, req.id, "admin", "  needed for audit week ")

    assert declined.status == RequestStatus.DECLINED
    assert declined.decline_reason == "  needed for audit week "
    assert declined.processed_by == "admin"
    assert _asset_status(db_session, asset.id) == AssetStatus.AVAILABLE


def test_decline_without_reason(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    declined = workflow.decline(db_session, req.id, "admin")
    assert declined.status == RequestStatus.DECLINED
    assert declined.decline_reason is None


def test_decline_approved_request_is_invalid(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    workflow.approve(db_session, req.id, "admin")

    with pytest.raises(InvalidTransition):
        workflow.decline(db_session, req.id, "admin", "changed my mind")
    assert _asset_status(db_session, asset.id) == AssetStatus.IN_USE


def test_cancel_by_owner_while_pending(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    with pytest.raises(Unauthorized):
        workflow.cancel(db_session, req.id, "U2")
    assert workflow.get_request(db_session, req.id).status == RequestStatus.PENDING

    cancelled = workflow.cancel(db_session, req.id, "U1")
    assert cancelled.status == RequestStatus.CANCELLED
    assert cancelled.processed_by is None


def test_cancel_approved_request_is_invalid(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    workflow.approve(db_session, req.id, "admin")

    with pytest.raises(InvalidTransition):
        workflow.cancel(db_session, req.id, "U1")
    assert workflow.get_request(db_session, req.id).status == RequestStatus.APPROVED


def test_complete_requires_approved(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")

    with pytest.raises(InvalidTransition):
        workflow.complete(db_session, req.id)
    assert _asset_status(db_session, asset.id) == AssetStatus.AVAILABLE


def test_complete_fails_when_asset_not_in_use(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    workflow.approve(db_session, req.id, "admin")
    # moved behind the workflow's back
    crud.set_asset_status(db_session, asset.id, AssetStatus.DAMAGED)

    with pytest.raises(AssetUnavailable):
        workflow.complete(db_session, req.id)

    assert workflow.get_request(db_session, req.id).status == RequestStatus.APPROVED
    assert _asset_status(db_session, asset.id) == AssetStatus.DAMAGED


@pytest.mark.parametrize("terminal", ["decline", "cancel", "complete"])
def test_terminal_states_accept_no_transitions(db_session, make_asset, terminal):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    if terminal == "decline":
        workflow.decline(db_session, req.id, "admin")
    elif terminal == "cancel":
        workflow.cancel(db_session, req.id, "U1")
    else:
        workflow.approve(db_session, req.id, "admin")
        workflow.complete(db_session, req.id)

    for attempt in (
        lambda: workflow.approve(db_session, req.id, "admin"),
        lambda: workflow.decline(db_session, req.id, "admin"),
        lambda: workflow.cancel(db_session, req.id, "U1"),
        lambda: workflow.complete(db_session, req.id),
    ):
        with pytest.raises(InvalidTransition):
            attempt()


def test_unknown_request_is_not_found(db_session):
    for attempt in (
        lambda: workflow.approve(db_session, 999, "admin"),
        lambda: workflow.decline(db_session, 999, "admin"),
        lambda: workflow.cancel(db_session, 999, "U1"),
        lambda: workflow.complete(db_session, 999),
        lambda: workflow.get_request(db_session, 999),
    ):
        with pytest.raises(NotFound):
            attempt()


def test_transition_table_rejects_undefined_pairs():
    for status in RequestStatus:
        for trigger in workflow.Trigger:
            if (status, trigger) in workflow.TRANSITIONS:
                assert workflow.next_status(status, trigger) == workflow.TRANSITIONS[(status, trigger)]
            else:
                with pytest.raises(InvalidTransition):
                    workflow.next_status(status, trigger)


def test_resubmit_after_complete(db_session, make_asset):
    asset = make_asset(serial="A101")
    first = workflow.submit_request(db_session, asset.id, "U1")
    workflow.approve(db_session, first.id, "admin")
    workflow.complete(db_session, first.id)

    second = workflow.submit_request(db_session, asset.id, "U1")
    assert second.id != first.id
    assert second.status == RequestStatus.PENDING

    history = workflow.list_requests_for_user(db_session, "U1")
    assert [r.id for r in history] == [second.id, first.id]
    assert [r.status for r in workflow.list_requests_for_user(db_session, "U1", RequestStatus.COMPLETE)] == [
        RequestStatus.COMPLETE
    ]


def test_queue_lists_only_pending(db_session, make_asset):
    a1 = make_asset(serial="A1", name="Laptop")
    a2 = make_asset(serial="A2", name="Camera")
    r1 = workflow.submit_request(db_session, a1.id, "U1")
    r2 = workflow.submit_request(db_session, a2.id, "U2")
    r3 = workflow.submit_request(db_session, a2.id, "U3")
    workflow.approve(db_session, r1.id, "admin")
    workflow.decline(db_session, r3.id, "admin")

    assert [r.id for r in workflow.list_active_requests(db_session)] == [r2.id]
    assert [r.id for r in workflow.list_active_requests(db_session, q="camera")] == [r2.id]
    assert workflow.list_active_requests(db_session, q="laptop") == []
    assert [r.id for r in workflow.list_active_requests(db_session, asset_id=a2.id)] == [r2.id]


def test_failed_operation_leaves_no_audit(db_session, make_asset):
    asset = make_asset()
    req = workflow.submit_request(db_session, asset.id, "U1")
    with pytest.raises(DuplicateRequest):
        workflow.submit_request(db_session, asset.id, "U1")
    workflow.approve(db_session, req.id, "admin")

    actions = [e.action_type for e in crud.list_audits(db_session, entity_id=str(req.id))]
    assert actions == ["BORROW_APPROVED", "BORROW_REQUESTED"]
