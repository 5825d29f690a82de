from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from order_customizations.db.models import OrderItem, OrderItemCustomization
from order_customizations.db.repositories import (
    CustomizationRulesRepository,
    OrderItemCustomizationsRepository,
    OrdersRepository,
    TemporaryFilesRepository,
)
from order_customizations.errors import CustomizationNotFoundError, DurableStorageError
from order_customizations.schemas.payloads import coerce_payload
from order_customizations.services.asset_extraction import iter_reference_urls
from order_customizations.services.durable_storage import (
    DurableStorage,
    LocalFolderStorage,
    get_durable_storage,
)
from order_customizations.services.identity import (
    FilledCustomization,
    ItemRule,
    matches_required_rule,
    split_rule_id,
)
from order_customizations.services.payload_codec import is_inline_reference, parse_customization_value
from order_customizations.services.temp_files import TempFileStore, transient_filename

logger = logging.getLogger(__name__)


@dataclass
class MissingRequiredIssue:
    order_item_id: str
    rule_id: str
    rule_name: str
    customization_type: str
    component_id: Optional[str]
    item_name: str


@dataclass
class InvalidCustomizationIssue:
    order_item_id: str
    customization_id: str
    title: Optional[str]
    reason: str


@dataclass
class CheckoutValidationResult:
    valid: bool
    files: dict[str, bool] = field(default_factory=dict)
    has_filled_content: bool = False
    missing_required: list[MissingRequiredIssue] = field(default_factory=list)
    invalid_customizations: list[InvalidCustomizationIssue] = field(default_factory=list)


@dataclass
class _Evaluated:
    filled: FilledCustomization
    structurally_valid: bool
    files_valid: bool

    @property
    def usable(self) -> bool:
        return self.structurally_valid and self.files_valid


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were written as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def describe_filled(record: OrderItemCustomization, payload: dict[str, Any]) -> FilledCustomization:
    payload_rule, qualifier = split_rule_id(payload.get("customizationRuleId"))
    component_id = payload.get("componentId")
    labels = tuple(
        value for value in (payload.get("title"), payload.get("label_selected")) if isinstance(value, str) and value
    )
    return FilledCustomization(
        customization_id=record.id,
        rule_id=record.customization_rule_id or payload_rule,
        component_id=component_id if isinstance(component_id, str) and component_id else qualifier,
        labels=labels,
    )


def expand_item_rules(
    orders: OrdersRepository, rules: CustomizationRulesRepository, item: OrderItem
) -> list[ItemRule]:
    """Rules of every component item and additional on an order item, tagged with a component id."""
    expanded: list[ItemRule] = []
    for component, component_item in orders.list_components(item.product_id):
        for rule in rules.list_for_item(component_item.id):
            expanded.append(
                ItemRule(
                    rule_id=rule.id,
                    name=rule.name,
                    type=rule.type.value,
                    component_id=component.id,
                    item_id=component_item.id,
                    item_name=component_item.name,
                    is_required=rule.is_required,
                )
            )
    for additional in orders.list_additionals(item.id):
        for rule in rules.list_for_additional(additional.id):
            expanded.append(
                ItemRule(
                    rule_id=rule.id,
                    name=rule.name,
                    type=rule.type.value,
                    component_id=additional.id,
                    item_id=additional.id,
                    item_name=additional.name,
                    is_additional=True,
                    is_required=rule.is_required,
                )
            )
    return expanded


class CheckoutValidator:
    def __init__(
        self,
        session: Session,
        *,
        storage: Optional[DurableStorage] = None,
        temp_store: Optional[TempFileStore] = None,
        local_storage: Optional[LocalFolderStorage] = None,
    ) -> None:
        self.orders = OrdersRepository(session)
        self.customizations = OrderItemCustomizationsRepository(session)
        self.rules = CustomizationRulesRepository(session)
        self.temp_files = TemporaryFilesRepository(session)
        self.storage = storage or get_durable_storage()
        self.temp_store = temp_store or TempFileStore()
        if local_storage is None:
            local_storage = self.storage if isinstance(self.storage, LocalFolderStorage) else LocalFolderStorage()
        self.local_storage = local_storage

    def required_rules(self, item: OrderItem) -> list[ItemRule]:
        return [rule for rule in expand_item_rules(self.orders, self.rules, item) if rule.is_required]

    async def url_is_valid(self, url: str) -> bool:
        if is_inline_reference(url):
            return False
        filename = transient_filename(url)
        if filename:
            return self._transient_is_valid(filename)
        if self.local_storage.owns_url(url):
            return await self.local_storage.file_exists(url=url)
        if self.storage.owns_url(url):
            try:
                return await self.storage.file_exists(url=url)
            except DurableStorageError:
                logger.warning("checkout.durable_lookup_failed", extra={"url": url}, exc_info=True)
                return False
        # External URLs are not ours to verify.
        return True

    def _transient_is_valid(self, filename: str) -> bool:
        record = self.temp_files.get_by_path(filename)
        expires_at = _aware(record.expires_at) if record else None
        if expires_at and expires_at <= datetime.now(timezone.utc):
            return False
        return self.temp_store.locate(filename) is not None

    async def files_valid(self, payload: dict[str, Any]) -> bool:
        for url in iter_reference_urls(payload):
            if not await self.url_is_valid(url):
                return False
        return True

    async def validate_files(self, order_id: str) -> dict[str, bool]:
        files: dict[str, bool] = {}
        for record in self.customizations.list_for_order(order_id):
            files[record.id] = await self.files_valid(parse_customization_value(record.value))
        return files

    async def validate(self, order_id: str) -> CheckoutValidationResult:
        if not self.orders.get(order_id):
            raise CustomizationNotFoundError(message=f"Order not found: {order_id}")

        result = CheckoutValidationResult(valid=False)
        for item in self.orders.list_items(order_id):
            evaluated: list[_Evaluated] = []
            for record in self.customizations.list_for_order_item(item.id):
                payload = parse_customization_value(record.value)
                structurally_valid = coerce_payload(payload).is_filled()
                files_valid = await self.files_valid(payload)
                result.files[record.id] = files_valid
                evaluated.append(_Evaluated(describe_filled(record, payload), structurally_valid, files_valid))
                if structurally_valid:
                    result.has_filled_content = True
                if not structurally_valid or not files_valid:
                    result.invalid_customizations.append(
                        InvalidCustomizationIssue(
                            order_item_id=item.id,
                            customization_id=record.id,
                            title=payload.get("title") if isinstance(payload.get("title"), str) else None,
                            reason="incomplete" if not structurally_valid else "missing_files",
                        )
                    )

            for rule in self.required_rules(item):
                if any(entry.usable and matches_required_rule(entry.filled, rule) for entry in evaluated):
                    continue
                result.missing_required.append(
                    MissingRequiredIssue(
                        order_item_id=item.id,
                        rule_id=rule.rule_id,
                        rule_name=rule.name,
                        customization_type=rule.type,
                        component_id=rule.component_id,
                        item_name=rule.item_name,
                    )
                )

        result.valid = not result.missing_required and not result.invalid_customizations
        logger.info(
            "checkout.validated",
            extra={
                "order_id": order_id,
                "valid": result.valid,
                "missing_required": len(result.missing_required),
                "invalid": len(result.invalid_customizations),
            },
        )
        return result


async def validate_checkout(
    session: Session,
    order_id: str,
    *,
    storage: Optional[DurableStorage] = None,
    temp_store: Optional[TempFileStore] = None,
) -> CheckoutValidationResult:
    return await CheckoutValidator(session, storage=storage, temp_store=temp_store).validate(order_id)


async def validate_customization_files(
    session: Session,
    order_id: str,
    *,
    storage: Optional[DurableStorage] = None,
    temp_store: Optional[TempFileStore] = None,
) -> dict[str, bool]:
    return await CheckoutValidator(session, storage=storage, temp_store=temp_store).validate_files(order_id)
