from datetime import datetime

import pytest

from stockwatch.services.audit_details import AuditAction
from stockwatch.services.risk_service import RiskContext, classify


def sale(subtotal, discount):
    return {"subtotal": subtotal, "discount_amount": discount, "total": subtotal - discount}


class TestHighDiscount:
    def test_exactly_fifteen_percent_is_not_flagged(self):
        assert classify(AuditAction.CREATE_SALE, sale(100, 15)) == []

    def test_just_over_fifteen_percent_is_flagged(self):
        assert classify(AuditAction.CREATE_SALE, sale(100, 15.01)) == ["high_discount"]

    def test_float_boundary_is_exact(self):
        # 0.045 / 0.3 is not exactly 0.15 in binary floating point
        assert "high_discount" not in classify(AuditAction.CREATE_SALE, sale(0.3, 0.045))

    def test_zero_subtotal(self):
        assert classify(AuditAction.CREATE_SALE, sale(0, 0)) == []

    def test_only_sales(self):
        assert classify(AuditAction.SALE_RETURN, sale(100, 50)) == []


class TestOffHours:
    @pytest.mark.parametrize("hour,flagged", [(5, True), (6, False), (22, False), (23, True), (0, True)])
    def test_boundaries(self, hour, flagged):
        ctx = RiskContext(occurred_at=datetime(2026, 3, 2, hour, 30))
        flags = classify(AuditAction.CREATE_SALE, sale(10, 0), context=ctx)
        assert ("off_hours" in flags) is flagged

    def test_applies_to_returns(self):
        ctx = RiskContext(occurred_at=datetime(2026, 3, 2, 23, 0))
        assert "off_hours" in classify(AuditAction.SALE_RETURN, {}, context=ctx)

    def test_not_for_catalogue_edits(self):
        ctx = RiskContext(occurred_at=datetime(2026, 3, 2, 3, 0))
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {}}, context=ctx) == []


class TestManyReturns:
    @pytest.mark.parametrize("prior,flagged", [(0, False), (1, False), (2, True), (4, True)])
    def test_third_return_in_window(self, prior, flagged):
        ctx = RiskContext(returns_count_last_2_days=prior)
        assert ("many_returns" in classify(AuditAction.SALE_RETURN, {}, context=ctx)) is flagged


class TestBulkDelete:
    @pytest.mark.parametrize("action", [AuditAction.DELETE_PRODUCT, AuditAction.DELETE_USER])
    def test_threshold(self, action):
        assert classify(action, {}, context=RiskContext(batch_size=4)) == []
        assert classify(action, {}, context=RiskContext(batch_size=5)) == ["bulk_delete"]

    def test_not_for_imports(self):
        assert classify(AuditAction.PRODUCT_IMPORT, {"removed": 50}, context=RiskContext(batch_size=50)) == []


class TestPriceDrop:
    def test_more_than_thirty_percent(self):
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {"price": 6.99}}, {"price": 10}) == ["price_drop"]

    def test_exactly_thirty_percent(self):
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {"price": 7}}, {"price": 10}) == []

    def test_needs_prior_snapshot(self):
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {"price": 1}}) == []

    def test_price_increase(self):
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {"price": 20}}, {"price": 10}) == []

    def test_other_field_changes(self):
        assert classify(AuditAction.UPDATE_PRODUCT, {"changes": {"stock": 1}}, {"price": 10}) == []


def test_unknown_action_has_no_flags():
    assert classify("LOGIN", {"discount_amount": 99, "subtotal": 100}) == []


def test_rules_are_additive():
    ctx = RiskContext(occurred_at=datetime(2026, 3, 2, 23, 15))
    assert classify(AuditAction.CREATE_SALE, sale(100, 50), context=ctx) == ["high_discount", "off_hours"]
