"""
Tests for RequestSelector: experiment allocation status and request summaries.
"""

from datetime import date
from uuid import uuid4

import pytest

from lab_kernel.domain.dtos import ExperimentSpec
from lab_kernel.domain.values import FulfillmentStatus, ReasonType, RequestStatus
from lab_kernel.exceptions import ExperimentNotFoundError, RequestNotFoundError
from tests.builders import allocate_cmd, chemical


@pytest.fixture
def ethanol_request(receive_stock, make_request):
    receive_stock("ethanol", 50)
    receive_stock("acetone", 50)
    return make_request(chemical("ethanol", 10), chemical("acetone", 10))


class TestAllocationStatus:
    def test_before_experiment(self, ethanol_request, request_selector, assistant):
        status = request_selector.allocation_status(ethanol_request.experiments[0].id, assistant)

        assert status.can_allocate
        assert status.reason_type == ReasonType.ALLOCATABLE
        assert status.days_remaining == 10
        assert status.pending_lines == 2

    def test_grace_period_depends_on_role(
        self, ethanol_request, request_selector, assistant, admin, deterministic_clock
    ):
        deterministic_clock.set_date(date(2025, 3, 21))
        experiment_id = ethanol_request.experiments[0].id

        as_assistant = request_selector.allocation_status(experiment_id, assistant)
        as_admin = request_selector.allocation_status(experiment_id, admin)

        assert as_assistant.reason_type == ReasonType.DATE_EXPIRED_ADMIN_ONLY
        assert as_assistant.days_overdue == 1
        assert as_admin.can_allocate

    def test_fully_allocated(
        self, ethanol_request, request_selector, allocation_service, assistant
    ):
        for line in ethanol_request.experiments[0].item_lines:
            allocation_service.allocate(allocate_cmd(line, assistant, 10))

        status = request_selector.allocation_status(ethanol_request.experiments[0].id, assistant)

        assert not status.can_allocate
        assert status.reason_type == ReasonType.FULLY_ALLOCATED

    def test_no_items_when_all_disabled(
        self, ethanol_request, request_selector, item_admin_service, admin
    ):
        for line in ethanol_request.experiments[0].item_lines:
            item_admin_service.set_disabled(line.id, True, "cancelled", admin)

        status = request_selector.allocation_status(ethanol_request.experiments[0].id, admin)

        assert status.reason_type == ReasonType.NO_ITEMS

    def test_re_enabled_lines_keep_experiment_open(
        self, ethanol_request, request_selector, item_admin_service, admin, assistant,
        deterministic_clock,
    ):
        ethanol = ethanol_request.experiments[0].item_lines[0]
        item_admin_service.set_disabled(ethanol.id, True, "hold", admin)
        item_admin_service.set_disabled(ethanol.id, False, None, admin)
        deterministic_clock.set_date(date(2025, 3, 30))

        status = request_selector.allocation_status(ethanol_request.experiments[0].id, assistant)

        assert status.can_allocate
        assert status.re_enabled_lines == 1

    def test_selector_does_not_write_gate_cache(
        self, ethanol_request, request_selector, assistant, deterministic_clock
    ):
        experiment = ethanol_request.experiments[0]
        deterministic_clock.set_date(date(2025, 3, 30))

        request_selector.allocation_status(experiment.id, assistant)

        assert experiment.can_allocate
        assert experiment.status_checked_at is None

    def test_unknown_experiment(self, request_selector, admin):
        with pytest.raises(ExperimentNotFoundError):
            request_selector.allocation_status(uuid4(), admin)


class TestRequestSummary:
    def test_counts_per_experiment(
        self, receive_stock, make_request, request_selector, allocation_service,
        item_admin_service, admin, assistant,
    ):
        receive_stock("ethanol", 50)
        request = make_request(
            experiments=[
                ExperimentSpec(
                    experiment_ref="EXP-1",
                    scheduled_date=date(2025, 3, 20),
                    items=(chemical("ethanol", 10), chemical("acetone", 5)),
                ),
                ExperimentSpec(
                    experiment_ref="EXP-2",
                    scheduled_date=date(2025, 3, 27),
                    items=(chemical("ethanol", 4),),
                ),
            ]
        )
        first, second = request.experiments
        allocation_service.allocate(allocate_cmd(first.item_lines[0], assistant, 10))
        item_admin_service.set_disabled(first.item_lines[1].id, True, None, admin)

        summary = request_selector.request_summary(request.id)

        assert summary.status == RequestStatus.PARTIALLY_FULFILLED
        one, two = summary.experiments
        assert (one.total_lines, one.disabled_lines, one.fully_allocated_lines) == (2, 1, 1)
        assert one.fulfillment_status == FulfillmentStatus.FULFILLED
        assert two.fulfillment_status == FulfillmentStatus.PENDING
        assert two.allocated_lines == 0

    def test_unknown_request(self, request_selector):
        with pytest.raises(RequestNotFoundError):
            request_selector.request_summary(uuid4())
