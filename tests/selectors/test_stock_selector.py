"""
Tests for StockSelector.
"""

from datetime import date
from decimal import Decimal

from lab_kernel.domain.values import EquipmentStatus, ItemKind
from tests.builders import CENTRAL, LAB, allocate_cmd, equipment


class TestLevels:
    def test_ordered_by_location_product_and_expiry(self, receive_stock, stock_selector):
        receive_stock("ethanol", 5, lot_code="late", expiry_date=date(2025, 9, 1))
        receive_stock("ethanol", 5, lot_code="early", expiry_date=date(2025, 4, 1))
        receive_stock("acetone", 5)
        receive_stock("ethanol", 2, lot_code="early", location=LAB, expiry_date=date(2025, 4, 1))

        levels = stock_selector.levels()

        assert [(lvl.location, lvl.product_id, lvl.lot_code) for lvl in levels] == [
            (CENTRAL, "acetone", ""),
            (CENTRAL, "ethanol", "early"),
            (CENTRAL, "ethanol", "late"),
            (LAB, "ethanol", "early"),
        ]

    def test_filters(self, receive_stock, stock_selector):
        receive_stock("ethanol", 5)
        receive_stock("beaker-250", 3, item_kind=ItemKind.GLASSWARE)
        receive_stock("ethanol", 2, location=LAB)

        assert [lvl.product_id for lvl in stock_selector.levels(item_kind="glassware")] == [
            "beaker-250"
        ]
        assert [lvl.location for lvl in stock_selector.levels(product_id="ethanol")] == [CENTRAL, LAB]
        assert len(stock_selector.levels(location=LAB)) == 1

    def test_empty_records_hidden_by_default(self, receive_stock, stock_service, stock_selector):
        record = receive_stock("ethanol", 5)
        stock_service.guarded_decrement(record.id, Decimal("5"))

        assert stock_selector.levels() == []
        (empty,) = stock_selector.levels(include_empty=True)
        assert empty.quantity == 0

    def test_available_quantity_sums_lots(self, receive_stock, stock_selector):
        receive_stock("ethanol", 5, lot_code="A")
        receive_stock("ethanol", "2.5", lot_code="B")
        receive_stock("ethanol", 100, variant="absolute")

        assert stock_selector.available_quantity("chemical", "ethanol", "", CENTRAL) == Decimal("7.5")
        assert stock_selector.available_quantity("chemical", "ethanol", "", LAB) == 0


class TestEquipmentUnits:
    def test_unit_register(
        self, register_units, make_request, allocation_service, assistant, stock_selector
    ):
        register_units("microscope", "MIC-2", "MIC-1")
        line = make_request(equipment("microscope", 1)).experiments[0].item_lines[0]
        allocation_service.allocate(allocate_cmd(line, assistant, 1))

        units = stock_selector.equipment_units(product_id="microscope")

        assert [u.item_code for u in units] == ["MIC-1", "MIC-2"]
        assert units[0].status == EquipmentStatus.ASSIGNED
        assert units[0].location == LAB
        assert units[0].is_allocated
        assert stock_selector.available_unit_count("microscope", "", CENTRAL) == 1
        (available,) = stock_selector.equipment_units(status=EquipmentStatus.AVAILABLE)
        assert available.item_code == "MIC-2"
