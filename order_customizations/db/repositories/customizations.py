from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from order_customizations.db.models import OrderItem, OrderItemCustomization


class OrderItemCustomizationsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, customization_id: str) -> Optional[OrderItemCustomization]:
        return self.session.get(OrderItemCustomization, customization_id)

    def get_value(self, customization_id: str) -> Optional[str]:
        """Read the persisted value straight from the database, bypassing the identity map."""
        stmt = select(OrderItemCustomization.value).where(OrderItemCustomization.id == customization_id)
        return self.session.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()

    def list_for_order_item(self, order_item_id: str) -> List[OrderItemCustomization]:
        stmt = (
            select(OrderItemCustomization)
            .where(OrderItemCustomization.order_item_id == order_item_id)
            .order_by(OrderItemCustomization.created_at, OrderItemCustomization.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_for_order(self, order_id: str) -> List[OrderItemCustomization]:
        stmt = (
            select(OrderItemCustomization)
            .join(OrderItem, OrderItem.id == OrderItemCustomization.order_item_id)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItemCustomization.created_at, OrderItemCustomization.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(
        self,
        *,
        order_item_id: str,
        value: str,
        customization_rule_id: Optional[str] = None,
    ) -> OrderItemCustomization:
        customization = OrderItemCustomization(
            order_item_id=order_item_id,
            customization_rule_id=customization_rule_id,
            value=value,
        )
        self.session.add(customization)
        self.session.commit()
        self.session.refresh(customization)
        return customization

    def update(self, customization_id: str, **fields) -> Optional[OrderItemCustomization]:
        customization = self.get(customization_id)
        if not customization:
            return None
        for key, value in fields.items():
            setattr(customization, key, value)
        self.session.commit()
        self.session.refresh(customization)
        return customization

    def delete(self, customization_id: str) -> bool:
        customization = self.get(customization_id)
        if not customization:
            return False
        self.session.delete(customization)
        self.session.commit()
        return True
