from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from order_customizations.db.enums import CustomizationTypeEnum
from order_customizations.db.repositories.rules import CustomizationRulesRepository, LayoutsRepository
from order_customizations.schemas.payloads import MultipleChoicePayload, coerce_payload
from order_customizations.services.identity import normalize_rule_id

logger = logging.getLogger(__name__)

LAYOUT_ID_KEYS = ("selected_layout_id", "layout_id", "DYNAMIC_LAYOUT_id", "layoutId", "baseLayoutId")
LABEL_FIELDS = ("label_selected", "selected_option_label", "selected_item_label")


def find_layout_id(payload: Any) -> Optional[str]:
    """Depth-first search for the first known layout id key anywhere in the payload."""
    if isinstance(payload, list):
        for entry in payload:
            found = find_layout_id(entry)
            if found:
                return found
        return None
    if not isinstance(payload, dict):
        return None
    for key in LAYOUT_ID_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    for value in payload.values():
        if isinstance(value, (dict, list)):
            found = find_layout_id(value)
            if found:
                return found
    return None


def _option_label(options: Any, selected: str) -> Optional[str]:
    if not isinstance(options, list):
        return None
    for option in options:
        if isinstance(option, dict) and str(option.get("id")) == selected:
            return option.get("label") or option.get("name") or option.get("title")
    return None


def apply_label(payload: dict[str, Any], customization_type: Optional[str], label: Optional[str]) -> None:
    """Mirror a resolved label into the display fields; clear them all when label is None."""
    if not label:
        for key in LABEL_FIELDS:
            payload.pop(key, None)
        return
    payload["label_selected"] = label
    if customization_type == CustomizationTypeEnum.MULTIPLE_CHOICE.value:
        payload["selected_option_label"] = label
    elif customization_type == CustomizationTypeEnum.DYNAMIC_LAYOUT.value:
        payload["selected_item_label"] = label


class LabelResolver:
    def __init__(self, session: Session) -> None:
        self.rules = CustomizationRulesRepository(session)
        self.layouts = LayoutsRepository(session)

    async def resolve(
        self,
        customization_type: Optional[str],
        payload: dict[str, Any],
        *,
        rule_id: Optional[str] = None,
        selected_layout_id: Optional[str] = None,
    ) -> Optional[str]:
        if customization_type == CustomizationTypeEnum.MULTIPLE_CHOICE.value:
            return self._resolve_choice(payload, rule_id)
        if customization_type == CustomizationTypeEnum.DYNAMIC_LAYOUT.value:
            return self._resolve_layout(payload, selected_layout_id)
        return None

    def _resolve_choice(self, payload: dict[str, Any], rule_id: Optional[str]) -> Optional[str]:
        view = coerce_payload(payload, CustomizationTypeEnum.MULTIPLE_CHOICE.value)
        if not isinstance(view, MultipleChoicePayload):
            return None
        selected = view.selected_option_ref()
        if not selected:
            return None

        embedded = _option_label(view.options, selected)
        if embedded:
            return embedded

        normalized = normalize_rule_id(rule_id)
        if not normalized:
            return None
        try:
            rule = self.rules.get(normalized)
        except SQLAlchemyError:
            logger.warning("labels.rule_lookup_failed", extra={"rule_id": normalized}, exc_info=True)
            return None
        if not rule:
            return None
        return _option_label((rule.customization_data or {}).get("options"), selected)

    def _resolve_layout(self, payload: dict[str, Any], selected_layout_id: Optional[str]) -> Optional[str]:
        layout_id = (
            selected_layout_id
            or payload.get("layout_id")
            or payload.get("DYNAMIC_LAYOUT_id")
            or find_layout_id(payload)
        )
        if not isinstance(layout_id, str) or not layout_id:
            return None
        try:
            layout = self.layouts.get_dynamic(layout_id)
            if layout:
                return layout.name
            legacy = self.layouts.get_base(layout_id)
        except SQLAlchemyError:
            logger.warning("labels.layout_lookup_failed", extra={"layout_id": layout_id}, exc_info=True)
            return None
        return legacy.name if legacy else None
