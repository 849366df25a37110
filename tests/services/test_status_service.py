"""
Tests for StatusService: recomputation is derived, idempotent and logged
only on change.
"""

from lab_kernel.domain.values import FulfillmentStatus, RequestStatus
from lab_kernel.services.status_service import StatusService
from tests.builders import allocate_cmd, chemical


def test_recompute_is_idempotent(
    session, deterministic_clock, config, receive_stock, make_request, allocation_service, assistant,
    captured_logs,
):
    receive_stock("ethanol", 50)
    receive_stock("acetone", 50)
    request = make_request(chemical("ethanol", 10), chemical("acetone", 10))
    ethanol = request.experiments[0].item_lines[0]
    allocation_service.allocate(allocate_cmd(ethanol, assistant, 10))
    status = StatusService(session, deterministic_clock, config)
    already_logged = len(captured_logs())

    first = status.recompute(request)
    second = status.recompute(request)

    assert first == second == RequestStatus.PARTIALLY_FULFILLED.value
    assert request.experiments[0].fulfillment_status == FulfillmentStatus.PARTIALLY_FULFILLED
    later = captured_logs()[already_logged:]
    assert not [r for r in later if r["message"] == "request_status_changed"]


def test_status_change_logged(
    session, deterministic_clock, config, make_request, captured_logs
):
    request = make_request(chemical("ethanol", 10))
    line = request.experiments[0].item_lines[0]
    line.allocated_quantity = line.quantity
    line.is_allocated = True

    StatusService(session, deterministic_clock, config).recompute(request)

    (change,) = [r for r in captured_logs() if r["message"] == "request_status_changed"]
    assert change["from_status"] == "approved"
    assert change["to_status"] == "fulfilled"


def test_pending_request_untouched(session, deterministic_clock, config, make_request):
    request = make_request(chemical("ethanol", 10), approve=False)

    StatusService(session, deterministic_clock, config).recompute(request)

    assert request.status == RequestStatus.PENDING


def test_gate_cache_refreshed_for_role(
    session, deterministic_clock, config, make_request
):
    request = make_request(chemical("ethanol", 10))
    experiment = request.experiments[0]
    deterministic_clock.advance_days(11)

    StatusService(session, deterministic_clock, config).recompute(request, role="faculty")

    assert not experiment.can_allocate
    assert experiment.reason_type == "date_expired_admin_only"
    assert experiment.status_checked_at is not None
