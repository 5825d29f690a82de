from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from order_customizations.db.models import (
    Additional,
    Item,
    Order,
    OrderItem,
    OrderItemAdditional,
    OrderItemCustomization,
    Product,
    ProductComponent,
)


class OrdersRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, order_id: str) -> Optional[Order]:
        return self.session.get(Order, order_id)

    def list_items(self, order_id: str) -> List[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        return list(self.session.scalars(stmt).all())

    def get_item(self, order_id: str, order_item_id: str) -> Optional[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.id == order_item_id, OrderItem.order_id == order_id)
        return self.session.scalars(stmt).first()

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.session.get(Product, product_id)

    def list_components(self, product_id: str) -> List[tuple[ProductComponent, Item]]:
        stmt = (
            select(ProductComponent, Item)
            .join(Item, Item.id == ProductComponent.item_id)
            .where(ProductComponent.product_id == product_id)
            .order_by(ProductComponent.id)
        )
        return [(component, item) for component, item in self.session.execute(stmt).all()]

    def list_additionals(self, order_item_id: str) -> List[Additional]:
        stmt = (
            select(Additional)
            .join(OrderItemAdditional, OrderItemAdditional.additional_id == Additional.id)
            .where(OrderItemAdditional.order_item_id == order_item_id)
            .order_by(Additional.id)
        )
        return list(self.session.scalars(stmt).all())

    def mark_customizations_finalized(
        self, order_id: str, *, folder_id: str, folder_url: str
    ) -> Optional[Order]:
        order = self.get(order_id)
        if not order:
            return None
        order.drive_folder_id = folder_id
        order.drive_folder_url = folder_url
        order.customizations_finalized = True
        order.customizations_finalized_at = datetime.now(timezone.utc)
        self.session.commit()
        self.session.refresh(order)
        return order

    def delete(self, order_id: str) -> None:
        item_ids = select(OrderItem.id).where(OrderItem.order_id == order_id)
        self.session.execute(
            delete(OrderItemCustomization).where(OrderItemCustomization.order_item_id.in_(item_ids))
        )
        self.session.execute(
            delete(OrderItemAdditional).where(OrderItemAdditional.order_item_id.in_(item_ids))
        )
        self.session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        self.session.execute(delete(Order).where(Order.id == order_id))
        self.session.commit()
