from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from order_customizations.config import settings
from order_customizations.db.models import OrderItem, OrderItemCustomization
from order_customizations.db.repositories import (
    CustomizationRulesRepository,
    OrderItemCustomizationsRepository,
    OrdersRepository,
    TemporaryFilesRepository,
)
from order_customizations.errors import CustomizationNotFoundError, InvalidCustomizationError
from order_customizations.services.asset_extraction import dropped_preview_urls
from order_customizations.services.identity import (
    StoredCustomization,
    SubmittedIdentity,
    find_existing_customization,
    split_rule_id,
)
from order_customizations.services.labels import LabelResolver, apply_label
from order_customizations.services.payload_codec import (
    contains_data_uri,
    parse_customization_value,
    serialize_customization_value,
)
from order_customizations.services.sanitizer import strip_inline_binary
from order_customizations.services.temp_files import TempFileStore, transient_filename

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


@dataclass
class CustomizationView:
    id: str
    order_item_id: str
    customization_rule_id: Optional[str]
    value: dict[str, Any]
    drive_folder_id: Optional[str]
    drive_folder_url: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass
class OrderItemCustomizationsView:
    order_item_id: str
    product_id: str
    product_name: Optional[str]
    customizations: list[CustomizationView] = field(default_factory=list)


def customization_view(record: OrderItemCustomization, value: Optional[dict[str, Any]] = None) -> CustomizationView:
    """Read-side view of a record with inline binary scrubbed from its value."""
    value = dict(parse_customization_value(record.value)) if value is None else dict(value)
    strip_inline_binary(value)
    return CustomizationView(
        id=record.id,
        order_item_id=record.order_item_id,
        customization_rule_id=record.customization_rule_id,
        value=value,
        drive_folder_id=record.drive_folder_id,
        drive_folder_url=record.drive_folder_url,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def ensure_order_item(session: Session, order_id: str, order_item_id: str) -> OrderItem:
    item = OrdersRepository(session).get_item(order_id, order_item_id)
    if not item:
        raise CustomizationNotFoundError(message=f"Order item {order_item_id} not found in order {order_id}")
    return item


def _decode_inline(encoded: str) -> tuple[bytes, str]:
    """Decode a data URI or raw base64 string into (bytes, media type)."""
    media_type = "image/png"
    match = _DATA_URI.match(encoded)
    if match:
        media_type, encoded = match.group(1), match.group(2)
    elif encoded.startswith("data:"):
        raise InvalidCustomizationError(message=f"Invalid inline encoding: {encoded[:50]}")
    try:
        return base64.b64decode(encoded, validate=False), media_type
    except (binascii.Error, ValueError) as exc:
        raise InvalidCustomizationError(message="Invalid inline base64 content") from exc


class InlineArtworkWriter:
    """Moves inline base64 artwork out of a save request into transient files."""

    _ARTWORK_KEYS = ("artwork", "finalArtwork")

    def __init__(self, session: Session, temp_store: TempFileStore) -> None:
        self.temp_files = TemporaryFilesRepository(session)
        self.temp_store = temp_store

    def write(self, entry: dict[str, Any]) -> dict[str, Any]:
        data, media_type = _decode_inline(entry["base64"])
        original_name = entry.get("fileName") or "artwork"
        saved = self.temp_store.save_bytes(data, original_name)
        self.temp_files.create(
            file_path=saved.filename,
            mime_type=media_type,
            original_name=original_name,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.TEMP_FILE_TTL_HOURS),
        )
        converted = {key: value for key, value in entry.items() if key != "base64"}
        converted["preview_url"] = saved.url
        return converted

    def externalize(
        self,
        data: dict[str, Any],
        final_artwork: Optional[dict[str, Any]] = None,
        final_artworks: Optional[list[dict[str, Any]]] = None,
    ) -> dict[str, Any]:
        result = dict(data)
        if final_artwork:
            result["final_artwork"] = self.write(final_artwork) if final_artwork.get("base64") else final_artwork
        if final_artworks:
            result["final_artworks"] = [
                self.write(artwork) if isinstance(artwork, dict) and artwork.get("base64") else artwork
                for artwork in final_artworks
            ]
        return self._walk(result)

    def _walk(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self._walk(entry) for entry in value]
        if not isinstance(value, dict):
            return value
        processed: dict[str, Any] = {}
        for key, entry in value.items():
            is_media_key = "base64" in key or key in self._ARTWORK_KEYS or "photo" in key
            if is_media_key and isinstance(entry, dict) and isinstance(entry.get("base64"), str) and entry["base64"]:
                processed[key] = self.write(entry)
            else:
                processed[key] = self._walk(entry)
        return processed


def _replaced_transient_files(previous: dict[str, Any], current: dict[str, Any]) -> list[str]:
    filenames = {transient_filename(url) for url in dropped_preview_urls(previous, current)}
    return sorted(name for name in filenames if name)


class CustomizationsService:
    def __init__(self, session: Session, *, temp_store: Optional[TempFileStore] = None) -> None:
        self.session = session
        self.orders = OrdersRepository(session)
        self.customizations = OrderItemCustomizationsRepository(session)
        self.rules = CustomizationRulesRepository(session)
        self.labels = LabelResolver(session)
        self.temp_store = temp_store or TempFileStore()

    def _rule_foreign_key(self, rule_id: Optional[str], component_id: Optional[str]) -> Optional[str]:
        rule, qualifier = split_rule_id(rule_id)
        if not rule or qualifier or component_id:
            return None
        return rule if self.rules.get(rule) else None

    def _delete_transient(self, filenames: list[str]) -> None:
        if not filenames:
            return
        result = self.temp_store.delete_files(filenames)
        logger.info(
            "customizations.replaced_files_deleted",
            extra={"deleted": result.deleted, "failed": result.failed},
        )

    async def save(
        self,
        *,
        order_id: str,
        order_item_id: str,
        customization_type: str,
        title: str,
        data: dict[str, Any],
        rule_id: Optional[str] = None,
        selected_layout_id: Optional[str] = None,
        final_artwork: Optional[dict[str, Any]] = None,
        final_artworks: Optional[list[dict[str, Any]]] = None,
    ) -> OrderItemCustomization:
        ensure_order_item(self.session, order_id, order_item_id)
        data = InlineArtworkWriter(self.session, self.temp_store).externalize(data, final_artwork, final_artworks)

        _, qualifier = split_rule_id(rule_id)
        component_id = data.get("componentId") or qualifier
        value: dict[str, Any] = {
            **data,
            "customizationRuleId": rule_id,
            "customization_type": customization_type,
            "title": title,
            "selected_layout_id": selected_layout_id,
            "componentId": component_id,
        }

        stored = [
            StoredCustomization(record=record, payload=parse_customization_value(record.value))
            for record in self.customizations.list_for_order_item(order_item_id)
        ]
        submitted = SubmittedIdentity.build(rule_id=rule_id, component_id=component_id, title=title)
        existing = find_existing_customization(submitted, stored)

        label = await self.labels.resolve(
            customization_type, value, rule_id=rule_id, selected_layout_id=selected_layout_id
        )
        if label:
            apply_label(value, customization_type, label)

        foreign_key = self._rule_foreign_key(rule_id, component_id)
        serialized = serialize_customization_value(value)
        if existing:
            replaced = _replaced_transient_files(existing.payload, value)
            record = self.customizations.update(
                existing.record.id, value=serialized, customization_rule_id=foreign_key
            )
            logger.info(
                "customizations.updated",
                extra={"customization_id": existing.record.id, "order_item_id": order_item_id},
            )
        else:
            replaced = []
            record = self.customizations.create(
                order_item_id=order_item_id, value=serialized, customization_rule_id=foreign_key
            )
            logger.info(
                "customizations.created",
                extra={"customization_id": record.id, "order_item_id": order_item_id, "rule_id": rule_id},
            )
        self._delete_transient(replaced)
        return record

    async def update(
        self,
        customization_id: str,
        *,
        data: Optional[dict[str, Any]] = None,
        title: Optional[str] = None,
        customization_type: Optional[str] = None,
        rule_id: Optional[str] = None,
        selected_layout_id: Optional[str] = None,
    ) -> OrderItemCustomization:
        existing = self.customizations.get(customization_id)
        if not existing:
            raise CustomizationNotFoundError(message=f"Customization not found: {customization_id}")

        previous = parse_customization_value(existing.value)
        merged = {**previous, **(data or {})}
        if title:
            merged["title"] = title
        if customization_type:
            merged["customization_type"] = customization_type
        if selected_layout_id:
            merged["selected_layout_id"] = selected_layout_id

        effective_type = customization_type or merged.get("customization_type")
        label = await self.labels.resolve(
            effective_type,
            merged,
            rule_id=rule_id or existing.customization_rule_id or merged.get("customizationRuleId"),
            selected_layout_id=selected_layout_id or merged.get("selected_layout_id"),
        )
        # Clears stale labels when nothing resolves.
        apply_label(merged, effective_type, label)

        serialized = serialize_customization_value(merged)
        if contains_data_uri(serialized):
            logger.warning("customizations.inline_base64_on_update", extra={"customization_id": customization_id})

        fields: dict[str, Any] = {"value": serialized}
        if rule_id:
            _, qualifier = split_rule_id(rule_id)
            fields["customization_rule_id"] = self._rule_foreign_key(rule_id, merged.get("componentId") or qualifier)
        record = self.customizations.update(customization_id, **fields)
        self._delete_transient(_replaced_transient_files(previous, merged))
        logger.info("customizations.updated", extra={"customization_id": customization_id})
        return record

    def list_for_order(self, order_id: str) -> list[OrderItemCustomizationsView]:
        if not self.orders.get(order_id):
            raise CustomizationNotFoundError(message=f"Order not found: {order_id}")
        views: list[OrderItemCustomizationsView] = []
        for item in self.orders.list_items(order_id):
            product = self.orders.get_product(item.product_id)
            view = OrderItemCustomizationsView(
                order_item_id=item.id,
                product_id=item.product_id,
                product_name=product.name if product else None,
            )
            view.customizations.extend(
                customization_view(record) for record in self.customizations.list_for_order_item(item.id)
            )
            views.append(view)
        return views


async def save_customization(session: Session, *, temp_store: Optional[TempFileStore] = None, **kwargs: Any):
    return await CustomizationsService(session, temp_store=temp_store).save(**kwargs)


async def update_customization(
    session: Session, customization_id: str, *, temp_store: Optional[TempFileStore] = None, **kwargs: Any
):
    return await CustomizationsService(session, temp_store=temp_store).update(customization_id, **kwargs)


def list_order_customizations(session: Session, order_id: str) -> list[OrderItemCustomizationsView]:
    return CustomizationsService(session).list_for_order(order_id)
