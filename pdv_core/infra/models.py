from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    String, Integer, DateTime, Numeric, ForeignKey, Text,
    Enum as SAEnum, UniqueConstraint, Index, func
)

from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship
)


# base
class Base(DeclarativeBase):
    pass

# enums = status
class DraftStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    FINALIZED = "FINALIZED"

class DocumentType(str, enum.Enum):
    SALE = "SALE"
    QUOTE = "QUOTE"

class DocumentStatus(str, enum.Enum):
    FINALIZED = "FINALIZED"
    PENDING = "PENDING"

# models
class DraftORM(Base):
    __tablename__ = "drafts"
    __table_args__ = (
        UniqueConstraint("session_key", name="uq_drafts_session_key"), # um slot por sessão
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_key: Mapped[str] = mapped_column(String(160), nullable=False)

    status: Mapped[DraftStatus] = mapped_column(
        SAEnum(DraftStatus, name="draft_status"), nullable=False, default=DraftStatus.DRAFT
    )

    # snapshot completo do carrinho (JSON)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

class DocumentORM(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("public_id", name="uq_documents_public_id"),
        Index("ix_documents_type_status", "type", "status"),
    )

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    public_id: Mapped[str] = mapped_column(String(30), nullable=False)

    type: Mapped[DocumentType] = mapped_column(
        SAEnum(DocumentType, name="document_type"), nullable=False
    )
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, name="document_status"), nullable=False
    )

    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    saldo_pendente: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    edited_from_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    converted_from_quote_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    # documento imutável (linhas, cliente, desconto, frete...) em JSON
    snapshot_json: Mapped[str] = mapped_column(Text, nullable=False)

    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    payments: Mapped[List["PaymentORM"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="PaymentORM.id",
    )

class PaymentORM(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_document_id", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)

    method: Mapped[str] = mapped_column(String(40), nullable=False)
    nominal_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=0)
    effective_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    document: Mapped["DocumentORM"] = relationship(back_populates="payments")

class StockORM(Base):
    __tablename__ = "stock"
    __table_args__ = (
        # variation_id "" = item sem variação
        UniqueConstraint("item_id", "variation_id", name="uq_stock_item_variation"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[str] = mapped_column(String(80), nullable=False)
    variation_id: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False, default=0)

class StockMovementORM(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        # mesma finalização não baixa duas vezes
        UniqueConstraint("reference", "item_id", "variation_id", name="uq_stock_movements_ref_item"),
        Index("ix_stock_movements_reference", "reference"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reference: Mapped[str] = mapped_column(String(80), nullable=False)
    item_id: Mapped[str] = mapped_column(String(80), nullable=False)
    variation_id: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
