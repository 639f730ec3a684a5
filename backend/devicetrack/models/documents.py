from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Transfer(db.Model):
    """
    Warehouse-to-store shipment of one or more devices.

    LIFECYCLE:
    1. pending: created, devices marked transferred
    2. in_transit: dispatched from the warehouse (no device change)
    3. received: devices now in_store at the destination
    4. cancelled: devices back in_warehouse (from pending or in_transit)
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.Index("ix_transfers_warehouse_status", "warehouse_id", "status"),
        db.Index("ix_transfers_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    # pending, in_transit, received, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending")

    initiated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    transfer_date = db.Column(db.Date, nullable=False)
    received_date = db.Column(db.Date, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # QC performed at the warehouse before dispatch
    qc_passed = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    warehouse = db.relationship("Warehouse")
    store = db.relationship("Store", backref=db.backref("transfers", lazy="dynamic"))
    initiator = db.relationship("User", foreign_keys=[initiated_by])
    receiver = db.relationship("User", foreign_keys=[received_by])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "store_id": self.store_id,
            "status": self.status,
            "initiated_by": self.initiated_by,
            "received_by": self.received_by,
            "cancelled_by": self.cancelled_by,
            "transfer_date": to_iso_date(self.transfer_date),
            "received_date": to_iso_date(self.received_date),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "qc_passed": self.qc_passed,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class TransferItem(db.Model):
    """One device on a transfer."""
    __tablename__ = "transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "device_id", name="uq_transfer_items_transfer_device"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transfer = db.relationship(
        "Transfer",
        backref=db.backref("items", lazy=True, order_by="TransferItem.id"),
    )
    device = db.relationship("Device", backref=db.backref("transfer_items", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "device_id": self.device_id,
            "created_at": to_utc_z(self.created_at),
        }


class DemandRequest(db.Model):
    """
    Store-originated request for more stock of a model.

    LIFECYCLE: pending -> approved | rejected | fulfilled (processed once).
    """
    __tablename__ = "demand_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    model = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    remarks = db.Column(db.Text, nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("demand_requests", lazy="dynamic"))
    requester = db.relationship("User", foreign_keys=[requested_by])
    processor = db.relationship("User", foreign_keys=[processed_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "requested_by": self.requested_by,
            "model": self.model,
            "quantity": self.quantity,
            "status": self.status,
            "remarks": self.remarks,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-store document sequences.

    WHY: Prevent race conditions when generating invoice numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
