from __future__ import annotations

from datetime import date

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Sale(db.Model):
    """
    Sale of one device to a customer.

    A device has at most one open (not returned) sale; the partial unique
    index enforces it. Once returned, the device may be re-issued and sold
    again under a new Sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index(
            "uq_sales_open_device",
            "device_id",
            unique=True,
            sqlite_where=db.text("returned_at IS NULL"),
            postgresql_where=db.text("returned_at IS NULL"),
        ),
        db.Index("ix_sales_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "MAI-20240115-000042")
    invoice_number = db.Column(db.String(64), nullable=False)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=False, index=True)
    sold_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=False)

    # Authoritative storage in cents
    sale_price_cents = db.Column(db.Integer, nullable=False)
    on_emi = db.Column(db.Boolean, nullable=False, default=False)
    sale_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Return audit trail
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    return_reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales", lazy="dynamic"))
    device = db.relationship("Device", backref=db.backref("sales", lazy="dynamic"))
    seller = db.relationship("User", foreign_keys=[sold_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "store_id": self.store_id,
            "device_id": self.device_id,
            "sold_by": self.sold_by,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "sale_price_cents": self.sale_price_cents,
            "on_emi": self.on_emi,
            "sale_date": to_iso_date(self.sale_date),
            "notes": self.notes,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "returned_by": self.returned_by,
            "return_reason": self.return_reason,
            "created_at": to_utc_z(self.created_at),
        }


class EmiDetail(db.Model):
    """
    Installment loan attached to a sale.

    INVARIANTS:
    - 0 <= installments_paid <= total_installments
    - installments_paid == total_installments implies is_active is False
    - next_emi_date == first_emi_date + installments_paid months while active
    """
    __tablename__ = "emi_details"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_emi_details_sale"),
        db.CheckConstraint("installments_paid >= 0", name="ck_emi_paid_non_negative"),
        db.CheckConstraint("installments_paid <= total_installments", name="ck_emi_paid_within_total"),
        db.Index("ix_emi_details_active_due", "is_active", "next_emi_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)

    total_installments = db.Column(db.Integer, nullable=False)
    emi_amount_cents = db.Column(db.Integer, nullable=False)
    installments_paid = db.Column(db.Integer, nullable=False, default=0)

    first_emi_date = db.Column(db.Date, nullable=False)
    next_emi_date = db.Column(db.Date, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    close_reason = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("emi_detail", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def is_fully_paid(self) -> bool:
        return self.installments_paid >= self.total_installments

    def remaining_amount_cents(self) -> int:
        return self.emi_amount_cents * (self.total_installments - self.installments_paid)

    def is_overdue(self, as_of: date) -> bool:
        return self.is_active and not self.is_fully_paid() and self.next_emi_date < as_of

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "total_installments": self.total_installments,
            "emi_amount_cents": self.emi_amount_cents,
            "installments_paid": self.installments_paid,
            "first_emi_date": to_iso_date(self.first_emi_date),
            "next_emi_date": to_iso_date(self.next_emi_date),
            "is_active": self.is_active,
            "is_fully_paid": self.is_fully_paid(),
            "remaining_amount_cents": self.remaining_amount_cents(),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by": self.closed_by,
            "close_reason": self.close_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class EmiPayment(db.Model):
    """Append-only record of one installment payment."""
    __tablename__ = "emi_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    emi_id = db.Column(db.Integer, db.ForeignKey("emi_details.id"), nullable=False, index=True)

    amount_paid_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(50), nullable=False)
    transaction_id = db.Column(db.String(100), nullable=True)

    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    emi = db.relationship(
        "EmiDetail",
        backref=db.backref("payments", lazy=True, order_by="EmiPayment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "emi_id": self.emi_id,
            "amount_paid_cents": self.amount_paid_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_method": self.payment_method,
            "transaction_id": self.transaction_id,
            "recorded_by": self.recorded_by,
            "created_at": to_utc_z(self.created_at),
        }
