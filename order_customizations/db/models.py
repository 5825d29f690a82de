from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from order_customizations.db.base import Base
from order_customizations.db.enums import CustomizationTypeEnum, OrderStatusEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class Item(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class ProductComponent(Base):
    __tablename__ = "product_components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[str] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), nullable=False)


class Additional(Base):
    __tablename__ = "additionals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class CustomizationRule(Base):
    __tablename__ = "customization_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[CustomizationTypeEnum] = mapped_column(
        Enum(CustomizationTypeEnum, name="customization_type"), nullable=False
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    item_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=True, index=True
    )
    additional_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("additionals.id", ondelete="CASCADE"), nullable=True, index=True
    )
    # options for MULTIPLE_CHOICE, layouts for DYNAMIC_LAYOUT
    customization_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    status: Mapped[OrderStatusEnum] = mapped_column(
        Enum(OrderStatusEnum, name="order_status"), nullable=False, default=OrderStatusEnum.PENDING
    )
    customer_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    drive_folder_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    drive_folder_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customizations_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    customizations_finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False)


class OrderItemAdditional(Base):
    __tablename__ = "order_item_additionals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_item_id: Mapped[str] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    additional_id: Mapped[str] = mapped_column(ForeignKey("additionals.id"), nullable=False)


class OrderItemCustomization(Base):
    __tablename__ = "order_item_customizations"
    __table_args__ = (sa.Index("idx_order_item_customizations_item", "order_item_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_item_id: Mapped[str] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False
    )
    # Null whenever the submitted rule id is component-qualified ("<rule>:<component>").
    customization_rule_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("customization_rules.id", ondelete="SET NULL"), nullable=True
    )
    value: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    drive_folder_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    drive_folder_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class DynamicLayout(Base):
    __tablename__ = "dynamic_layouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class LayoutBase(Base):
    __tablename__ = "layout_bases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class TemporaryCustomizationFile(Base):
    __tablename__ = "temporary_customization_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # Relative to the transient upload root.
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
