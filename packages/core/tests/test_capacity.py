"""Capacity Guard 单元测试"""

from haulflow.core.capacity import CapacityRejection, check_transfer
from haulflow.core.exceptions import (
    CapacityExceededError,
    MaterialMismatchError,
    ValidationFailedError,
    capacity_error,
)


class TestCheckTransfer:
    def test_over_capacity_rejected_with_remaining(self, make_destination):
        destination = make_destination(current_amount=900, max_capacity=1000)
        decision = check_transfer("metal", destination, 150)

        assert not decision
        assert decision.reason == CapacityRejection.CAPACITY_EXCEEDED
        assert decision.remaining_capacity == 100
        assert decision.requested_amount == 150
        assert decision.unit == "kg"

    def test_exact_fill_allowed(self, make_destination):
        destination = make_destination(current_amount=900, max_capacity=1000)
        decision = check_transfer("metal", destination, 100)
        assert decision
        assert decision.reason is None

    def test_material_mismatch_wins_over_capacity(self, make_destination):
        """物料不匹配时无论容量是否足够都拒绝，并携带两种物料"""
        destination = make_destination(current_amount=0, material_type="paper")
        decision = check_transfer("metal", destination, 1)

        assert not decision
        assert decision.reason == CapacityRejection.MATERIAL_MISMATCH
        assert decision.source_material == "metal"
        assert decision.destination_material == "paper"

    def test_inactive_container_rejected(self, make_destination):
        destination = make_destination(is_active=False)
        assert check_transfer("metal", destination, 1).reason == CapacityRejection.CONTAINER_INACTIVE

    def test_negative_amount_rejected(self, make_destination):
        assert (
            check_transfer("metal", make_destination(), -5).reason
            == CapacityRejection.INVALID_AMOUNT
        )


class TestCapacityError:
    def test_translates_capacity_decision(self, make_destination):
        decision = check_transfer("metal", make_destination(current_amount=900), 150)
        error = capacity_error(decision)

        assert isinstance(error, CapacityExceededError)
        assert error.code == "CAPACITY_EXCEEDED"
        assert error.details["remaining_capacity"] == 100
        assert error.details["requested_amount"] == 150

    def test_translates_material_decision(self, make_destination):
        decision = check_transfer("metal", make_destination(material_type="paper"), 10)
        error = capacity_error(decision)

        assert isinstance(error, MaterialMismatchError)
        assert error.details == {"source_material": "metal", "destination_material": "paper"}

    def test_other_rejections_are_generic_validation_errors(self, make_destination):
        decision = check_transfer("metal", make_destination(is_active=False), 10)
        error = capacity_error(decision)

        assert type(error) is ValidationFailedError
        assert error.details["reason"] == "container_inactive"
