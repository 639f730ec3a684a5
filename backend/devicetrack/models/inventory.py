from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Device(db.Model):
    """
    A single physical handset.

    LOCATION: warehouse_id XOR store_id is populated, according to status:
    - in_warehouse / transferred / returned -> warehouse_id
    - in_store / sold -> store_id

    IMEI values are unique across both imei columns of all devices; the
    per-column unique constraints catch races the service check cannot.

    version_id is an optimistic lock: two requests that both read the same
    version cannot both write it.
    """
    __tablename__ = "devices"
    __table_args__ = (
        db.UniqueConstraint("device_code", name="uq_devices_device_code"),
        db.UniqueConstraint("imei_1", name="uq_devices_imei_1"),
        db.UniqueConstraint("imei_2", name="uq_devices_imei_2"),
        db.Index("ix_devices_status", "status"),
        db.Index("ix_devices_warehouse_status", "warehouse_id", "status"),
        db.Index("ix_devices_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing identifier, e.g. "GAL-20240101120000-1A2B3C"
    device_code = db.Column(db.String(64), nullable=False)

    name = db.Column(db.String(255), nullable=False)
    model = db.Column(db.String(100), nullable=False)
    imei_1 = db.Column(db.String(20), nullable=False)
    imei_2 = db.Column(db.String(20), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="in_warehouse")

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    on_loan = db.Column(db.Boolean, nullable=False, default=False)
    purchase_date = db.Column(db.Date, nullable=True)

    # Artifact key of the rendered QR image, e.g. "qrcodes/<device_code>.png"
    qr_code = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse", backref=db.backref("devices", lazy="dynamic"))
    store = db.relationship("Store", backref=db.backref("devices", lazy="dynamic"))
    logs = db.relationship(
        "DeviceLog",
        primaryjoin="Device.id == foreign(DeviceLog.device_id)",
        order_by="DeviceLog.id.desc()",
        viewonly=True,
        lazy=True,
    )
    qc_checks = db.relationship(
        "QcCheck",
        backref="device",
        cascade="all, delete-orphan",
        order_by="QcCheck.id.desc()",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Device id={self.id} code={self.device_code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_code": self.device_code,
            "name": self.name,
            "model": self.model,
            "imei_1": self.imei_1,
            "imei_2": self.imei_2,
            "status": self.status,
            "warehouse_id": self.warehouse_id,
            "store_id": self.store_id,
            "on_loan": self.on_loan,
            "purchase_date": to_iso_date(self.purchase_date),
            "qr_code": self.qr_code,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DeviceLog(db.Model):
    """
    Append-only device history.

    INVARIANTS:
    - Rows are inserted by audit_service.append_device_log only.
    - No update or delete is ever issued against this table.
    - device_id carries no foreign key so history outlives a deleted device;
      device_code is snapshotted for the same reason.
    """
    __tablename__ = "device_logs"
    __table_args__ = (
        db.Index("ix_device_logs_device_created", "device_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, nullable=False)
    device_code = db.Column(db.String(64), nullable=False)

    # created / transferred / received / transfer_cancelled / sold / returned /
    # emi_payment / emi_completed / emi_closed / qc_checked / updated / deleted
    action = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)

    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    performer = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "device_code": self.device_code,
            "action": self.action,
            "description": self.description,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }


class QcCheck(db.Model):
    """Quality check performed on a device at a warehouse, a store or with the customer."""
    __tablename__ = "qc_checks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=False, index=True)

    check_type = db.Column(db.String(16), nullable=False)
    passed = db.Column(db.Boolean, nullable=False)
    remarks = db.Column(db.String(500), nullable=True)

    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    performer = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "check_type": self.check_type,
            "passed": self.passed,
            "remarks": self.remarks,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }
