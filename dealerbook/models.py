import datetime as dt
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dealerbook.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


class Company(Base):
    __tablename__ = "company"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0)


class QuantityUnit(Base):
    __tablename__ = "quantity_unit"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class Market(Base):
    __tablename__ = "market"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class Product(Base):
    __tablename__ = "product"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    purchase_price: Mapped[float] = mapped_column(Float, nullable=False)
    profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    selling_price: Mapped[float] = mapped_column(Float, nullable=False)
    round_figure_price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_unit: Mapped[str] = mapped_column(Text, nullable=False)
    larger_unit: Mapped[str | None] = mapped_column(Text)
    conversion_factor: Mapped[float | None] = mapped_column(Float)

    __table_args__ = (Index("ix_product_company", "company"),)


class Employee(Base):
    __tablename__ = "employee"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str | None] = mapped_column(Text)
    daily_salary: Mapped[float | None] = mapped_column(Float)


class Reward(Base):
    __tablename__ = "reward"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    purchase_price: Mapped[float] = mapped_column(Float, nullable=False)
    profit_margin: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    selling_price: Mapped[float] = mapped_column(Float, nullable=False)


class RewardRule(Base):
    __tablename__ = "reward_rule"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    main_product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False
    )
    main_product_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    main_product_unit: Mapped[str] = mapped_column(Text, nullable=False)
    reward_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("reward.id"), nullable=False
    )
    reward_quantity: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        CheckConstraint("main_product_quantity > 0", name="rule_main_quantity_positive"),
        CheckConstraint("reward_quantity > 0", name="rule_reward_quantity_positive"),
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entry"

    # ids come from the ledger-id-counter setting, never from the database
    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    day: Mapped[str] = mapped_column(Text, nullable=False)
    market: Mapped[str] = mapped_column(Text, nullable=False)
    salesperson_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    damaged_items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    reward_items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    total_sale: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    amount_paid: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    amount_due: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    due_assigned_to: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    commission: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    commission_assigned_to: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    note: Mapped[str | None] = mapped_column(Text)
    modified_reward_ids: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailySummary(Base):
    __tablename__ = "daily_summary"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    day: Mapped[str] = mapped_column(Text, nullable=False)
    market: Mapped[str] = mapped_column(Text, nullable=False)
    salesperson_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    reward_items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    total_sale: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    ledger_id: Mapped[int | None] = mapped_column(BigInteger)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'used')", name="summary_status"),
    )


class ReceivableTransaction(Base):
    __tablename__ = "receivable_transaction"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    ledger_id: Mapped[int | None] = mapped_column(BigInteger)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    note: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("type IN ('due', 'payment')", name="receivable_type"),
        Index("ix_receivable_employee", "employee_id"),
        Index("ix_receivable_ledger", "ledger_id"),
    )


class SupplierPayment(Base):
    __tablename__ = "supplier_payment"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    company_name: Mapped[str] = mapped_column(Text, nullable=False)
    payment_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(Text, nullable=False, default="Cash")
    advance_payment: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    items: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    received_date: Mapped[dt.date | None] = mapped_column(Date)
    note: Mapped[str | None] = mapped_column(Text)
    actual_received_items: Mapped[list | None] = mapped_column(JSON_TYPE)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'received')", name="supplier_payment_status"),
    )


class SmsRecord(Base):
    __tablename__ = "sms_record"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    sent_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recipient_name: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_phone: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    status_message: Mapped[str | None] = mapped_column(Text)
    sms_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed', 'pending')", name="sms_status"),
        Index("ix_sms_record_sent_at", "sent_at"),
    )


class AppSetting(Base):
    __tablename__ = "app_setting"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Any] = mapped_column(JSON_TYPE)


class DeletionOtp(Base):
    __tablename__ = "deletion_otp"

    subject: Mapped[str] = mapped_column(Text, primary_key=True)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
