# Overview: Pytest coverage for customer returns and the relocation of returned stock.

from datetime import date

import pytest

from devicetrack.extensions import db
from devicetrack.models import Device, DeviceLog, EmiDetail, Sale
from devicetrack.services import emi_service, return_service, transfer_service
from devicetrack.validation import (
    AuthorizationError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)


THREE_MONTH_PLAN = {
    "total_installments": 3,
    "emi_amount_cents": 100_00,
    "next_emi_date": date(2024, 2, 15),
}

TEN_MONTH_PLAN = {
    "total_installments": 10,
    "emi_amount_cents": 50_00,
    "next_emi_date": date(2024, 2, 1),
}


def _last_log(device_id):
    return (
        db.session.query(DeviceLog)
        .filter_by(device_id=device_id)
        .order_by(DeviceLog.id.desc())
        .first()
    )


class TestReturnDevice:

    def test_scenario_d_pending_emi_blocks_return(self, db_session, stock_store, sell, store_caller):
        """Three of ten installments paid: the device stays with the customer."""
        device = stock_store(1)[0]
        sale = sell(device, price_cents=500_00, emi=TEN_MONTH_PLAN)
        emi_id = sale.emi_detail.id
        for _ in range(3):
            emi_service.record_payment(store_caller, emi_id, amount_cents=50_00, payment_method="cash")

        with pytest.raises(PreconditionFailedError, match="pending EMI"):
            return_service.return_device(store_caller, sale.id, reason="Changed mind")

        refreshed = db.session.get(Device, device.id)
        assert refreshed.status == "sold"
        assert refreshed.on_loan is True
        assert db.session.get(Sale, sale.id).returned_at is None

    def test_cash_sale_returns_to_parent_warehouse(
        self, db_session, stock_store, sell, warehouse, store_caller
    ):
        device = stock_store(1)[0]
        sale = sell(device)

        returned = return_service.return_device(store_caller, sale.id, reason="Screen flicker")
        assert returned.returned_at is not None
        assert returned.returned_by == store_caller.user_id
        assert returned.return_reason == "Screen flicker"

        refreshed = db.session.get(Device, device.id)
        assert refreshed.status == "returned"
        assert refreshed.store_id is None
        assert refreshed.warehouse_id == warehouse.id
        assert refreshed.on_loan is False

        entry = _last_log(device.id)
        assert entry.action == "returned"
        assert entry.description == "Device returned by customer. Reason: Screen flicker"

    def test_return_after_full_payment(self, db_session, stock_store, sell, store_caller):
        device = stock_store(1)[0]
        sale = sell(device, price_cents=300_00, emi=THREE_MONTH_PLAN)
        emi_id = sale.emi_detail.id
        for _ in range(3):
            emi_service.record_payment(store_caller, emi_id, amount_cents=100_00, payment_method="upi")

        return_service.return_device(store_caller, sale.id, reason="Upgrade")
        assert db.session.get(Device, device.id).status == "returned"
        assert db.session.get(EmiDetail, emi_id).is_active is False

    def test_return_after_administrative_close(self, db_session, stock_store, sell, store_caller, admin):
        device = stock_store(1)[0]
        sale = sell(device, price_cents=300_00, emi=THREE_MONTH_PLAN)
        emi_service.close_emi(admin, sale.emi_detail.id, reason="Settled offline")

        return_service.return_device(store_caller, sale.id, reason="Settled and returned")
        refreshed = db.session.get(Device, device.id)
        assert refreshed.status == "returned"
        assert refreshed.on_loan is False

    def test_returned_device_can_be_resold(
        self, db_session, stock_store, sell, warehouse, store, warehouse_caller, store_caller
    ):
        device = stock_store(1)[0]
        first = sell(device)
        return_service.return_device(store_caller, first.id, reason="Wrong colour")

        transfer = transfer_service.create_transfer(
            warehouse_caller, warehouse_id=warehouse.id, store_id=store.id, device_ids=[device.id],
        )
        transfer_service.receive_transfer(store_caller, transfer.id)
        second = sell(device, price_cents=450_00)

        assert second.id != first.id
        assert db.session.query(Sale).filter_by(device_id=device.id).count() == 2
        assert return_service.has_pending_emi(second, db.session.get(Device, device.id)) is False
        actions = [
            e.action
            for e in db.session.query(DeviceLog).filter_by(device_id=device.id).order_by(DeviceLog.id)
        ]
        assert actions == [
            "created", "transferred", "received", "sold", "returned",
            "transferred", "received", "sold",
        ]


class TestReturnGuards:

    def test_reason_required(self, db_session, stock_store, sell, store_caller):
        sale = sell(stock_store(1)[0])
        with pytest.raises(ValidationError):
            return_service.return_device(store_caller, sale.id, reason=" ")

    def test_cannot_return_twice(self, db_session, stock_store, sell, store_caller):
        sale = sell(stock_store(1)[0])
        return_service.return_device(store_caller, sale.id, reason="First")
        with pytest.raises(PreconditionFailedError, match="not in sold status"):
            return_service.return_device(store_caller, sale.id, reason="Second")

    def test_other_store_denied(self, db_session, stock_store, sell, other_store_caller):
        sale = sell(stock_store(1)[0])
        with pytest.raises(AuthorizationError):
            return_service.return_device(other_store_caller, sale.id, reason="Not mine")

    def test_warehouse_user_cannot_take_returns(self, db_session, stock_store, sell, warehouse_caller):
        sale = sell(stock_store(1)[0])
        with pytest.raises(AuthorizationError):
            return_service.return_device(warehouse_caller, sale.id, reason="Nope")

    def test_unknown_sale(self, db_session, store_caller):
        with pytest.raises(NotFoundError):
            return_service.return_device(store_caller, 31337, reason="Ghost")
