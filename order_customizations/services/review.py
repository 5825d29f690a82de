from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from order_customizations.db.repositories import (
    CustomizationRulesRepository,
    OrderItemCustomizationsRepository,
    OrdersRepository,
)
from order_customizations.errors import CustomizationNotFoundError
from order_customizations.schemas.payloads import coerce_payload
from order_customizations.services.checkout_validation import describe_filled, expand_item_rules
from order_customizations.services.customizations import CustomizationView, customization_view
from order_customizations.services.identity import ItemRule
from order_customizations.services.payload_codec import parse_customization_value

logger = logging.getLogger(__name__)


@dataclass
class ReviewedCustomization:
    view: CustomizationView
    rule_id: Optional[str]
    component_id: Optional[str]


@dataclass
class OrderItemReview:
    order_item_id: str
    product_id: str
    product_name: Optional[str]
    available: list[ItemRule] = field(default_factory=list)
    filled: list[ReviewedCustomization] = field(default_factory=list)


class OrderReviewService:
    """What each order item offers next to what the customer actually filled in."""

    def __init__(self, session: Session) -> None:
        self.orders = OrdersRepository(session)
        self.customizations = OrderItemCustomizationsRepository(session)
        self.rules = CustomizationRulesRepository(session)

    def review(self, order_id: str) -> list[OrderItemReview]:
        if not self.orders.get(order_id):
            raise CustomizationNotFoundError(message=f"Order not found: {order_id}")

        reviews: list[OrderItemReview] = []
        for item in self.orders.list_items(order_id):
            product = self.orders.get_product(item.product_id)
            review = OrderItemReview(
                order_item_id=item.id,
                product_id=item.product_id,
                product_name=product.name if product else None,
                available=expand_item_rules(self.orders, self.rules, item),
            )
            # One entry per (rule, component); the earliest filled record wins.
            seen: set[tuple[str, str]] = set()
            for record in self.customizations.list_for_order_item(item.id):
                payload = parse_customization_value(record.value)
                if not coerce_payload(payload).is_filled():
                    continue
                filled = describe_filled(record, payload)
                key = (filled.rule_id or "default", filled.component_id or "default")
                if key in seen:
                    logger.info(
                        "review.duplicate_skipped",
                        extra={"customization_id": record.id, "rule_id": filled.rule_id},
                    )
                    continue
                seen.add(key)
                review.filled.append(
                    ReviewedCustomization(
                        view=customization_view(record, payload),
                        rule_id=filled.rule_id,
                        component_id=filled.component_id,
                    )
                )
            reviews.append(review)
        return reviews


def review_order(session: Session, order_id: str) -> list[OrderItemReview]:
    return OrderReviewService(session).review(order_id)
