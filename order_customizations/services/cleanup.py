from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from order_customizations.db.enums import OrderStatusEnum
from order_customizations.db.repositories import OrderItemCustomizationsRepository, OrdersRepository
from order_customizations.errors import CustomizationNotFoundError
from order_customizations.services.payload_codec import parse_customization_value

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    cleaned_count: int = 0
    order_deleted: bool = False


def _non_blank(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def has_content(payload: dict[str, Any]) -> bool:
    """Whether a customization carries anything a customer actually filled in."""
    if _non_blank(payload.get("title")):
        return True

    data = payload.get("data")
    if isinstance(data, dict) and any(value not in (None, "") for value in data.values()):
        return True

    image = payload.get("image") if isinstance(payload.get("image"), dict) else {}
    artwork = payload.get("final_artwork") if isinstance(payload.get("final_artwork"), dict) else {}
    artworks = payload.get("final_artworks") if isinstance(payload.get("final_artworks"), list) else []
    if (
        image.get("preview_url")
        or payload.get("previewUrl")
        or payload.get("preview_url")
        or artwork.get("preview_url")
        or artwork.get("google_drive_url")
        or any(isinstance(entry, dict) and entry.get("preview_url") for entry in artworks)
    ):
        return True

    for key in ("photos", "images", "texts"):
        entries = payload.get(key)
        if isinstance(entries, list) and entries:
            return True
    return _non_blank(payload.get("text"))


def sweep_empty_customizations(session: Session, order_id: str) -> CleanupResult:
    """Delete customizations without content; drop the whole order if it is an empty pending draft."""
    orders = OrdersRepository(session)
    customizations = OrderItemCustomizationsRepository(session)
    order = orders.get(order_id)
    if not order:
        raise CustomizationNotFoundError(message=f"Order not found: {order_id}")

    result = CleanupResult()
    items_with_content = 0
    for item in orders.list_items(order_id):
        item_has_content = False
        for record in customizations.list_for_order_item(item.id):
            if has_content(parse_customization_value(record.value)):
                item_has_content = True
            elif customizations.delete(record.id):
                result.cleaned_count += 1
        if item_has_content:
            items_with_content += 1

    if order.status == OrderStatusEnum.PENDING and items_with_content == 0:
        orders.delete(order_id)
        result.order_deleted = True
        logger.info("cleanup.order_deleted", extra={"order_id": order_id})

    logger.info(
        "cleanup.completed",
        extra={"order_id": order_id, "cleaned": result.cleaned_count, "order_deleted": result.order_deleted},
    )
    return result
