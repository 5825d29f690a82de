from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from order_customizations.db.models import CustomizationRule, DynamicLayout, LayoutBase


class CustomizationRulesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, rule_id: str) -> Optional[CustomizationRule]:
        return self.session.get(CustomizationRule, rule_id)

    def list_for_item(self, item_id: str) -> List[CustomizationRule]:
        stmt = select(CustomizationRule).where(CustomizationRule.item_id == item_id).order_by(CustomizationRule.id)
        return list(self.session.scalars(stmt).all())

    def list_for_additional(self, additional_id: str) -> List[CustomizationRule]:
        stmt = (
            select(CustomizationRule)
            .where(CustomizationRule.additional_id == additional_id)
            .order_by(CustomizationRule.id)
        )
        return list(self.session.scalars(stmt).all())


class LayoutsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_dynamic(self, layout_id: str) -> Optional[DynamicLayout]:
        return self.session.get(DynamicLayout, layout_id)

    def get_base(self, layout_id: str) -> Optional[LayoutBase]:
        return self.session.get(LayoutBase, layout_id)
