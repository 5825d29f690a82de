from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from order_customizations.db.enums import CustomizationTypeEnum
from order_customizations.db.models import Order, OrderItem, OrderItemCustomization
from order_customizations.db.repositories import OrderItemCustomizationsRepository, OrdersRepository
from order_customizations.errors import CustomizationNotFoundError
from order_customizations.services.asset_extraction import (
    AssetCandidate,
    extract_assets,
    iter_preview_urls,
    iter_reference_urls,
)
from order_customizations.services.asset_upload import AssetUploader, UploadedAsset
from order_customizations.services.durable_storage import DurableStorage, get_durable_storage
from order_customizations.services.labels import LabelResolver, apply_label
from order_customizations.services.payload_codec import (
    contains_data_uri,
    parse_customization_value,
    serialize_customization_value,
)
from order_customizations.services.sanitizer import sanitize_payload, strip_inline_binary
from order_customizations.services.temp_files import TempFileStore, transient_filename

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9]")
_LABELED_TYPES = (CustomizationTypeEnum.MULTIPLE_CHOICE.value, CustomizationTypeEnum.DYNAMIC_LAYOUT.value)


@dataclass
class FinalizeResult:
    status: str
    folder_id: Optional[str] = None
    folder_url: Optional[str] = None
    uploaded_count: int = 0
    residual_binary_detected: bool = False
    affected_ids: list[str] = field(default_factory=list)


def main_folder_name(order: Order, now: Optional[datetime] = None) -> str:
    customer = _UNSAFE_NAME_CHARS.sub("_", order.customer_name or "Cliente")[:40]
    day = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"Pedido_{customer}_{day}_{order.id[:8]}"


class OrderFinalizer:
    """One finalization run for one order.

    Folder ids created during the run are cached on the instance, so a finalizer
    must not be reused across runs.
    """

    def __init__(
        self,
        session: Session,
        *,
        storage: Optional[DurableStorage] = None,
        temp_store: Optional[TempFileStore] = None,
        uploader: Optional[AssetUploader] = None,
    ) -> None:
        self.session = session
        self.orders = OrdersRepository(session)
        self.customizations = OrderItemCustomizationsRepository(session)
        self.labels = LabelResolver(session)
        self.storage = storage or get_durable_storage()
        self.temp_store = temp_store or TempFileStore()
        self.uploader = uploader or AssetUploader(storage=self.storage, temp_store=self.temp_store)
        self.main_folder_id: Optional[str] = None
        self.subfolders: dict[str, str] = {}
        self.component_names: dict[str, str] = {}
        self.additional_names: dict[str, str] = {}

    async def run(self, order_id: str) -> FinalizeResult:
        order = self.orders.get(order_id)
        if not order:
            raise CustomizationNotFoundError(message=f"Order not found: {order_id}")
        if order.customizations_finalized and order.drive_folder_id:
            logger.info("finalize.already_finalized", extra={"order_id": order_id})
            return FinalizeResult(
                status="already_finalized",
                folder_id=order.drive_folder_id,
                folder_url=order.drive_folder_url,
            )

        items = self.orders.list_items(order_id)
        self._load_folder_names(items)
        uploaded_count = 0
        affected: list[str] = []
        released: list[str] = []
        for item in items:
            product = self.orders.get_product(item.product_id)
            product_name = product.name if product else None
            for record in self.customizations.list_for_order_item(item.id):
                count, residual, released_urls = await self._process(order, record, product_name)
                uploaded_count += count
                released.extend(released_urls)
                if residual:
                    affected.append(record.id)

        if not self.main_folder_id:
            logger.info("finalize.no_assets", extra={"order_id": order_id})
            return FinalizeResult(status="empty")

        self._delete_transient_files(order_id, released)

        folder_url = self.storage.get_folder_url(self.main_folder_id)
        self.orders.mark_customizations_finalized(order_id, folder_id=self.main_folder_id, folder_url=folder_url)
        logger.info(
            "finalize.completed",
            extra={"order_id": order_id, "uploaded": uploaded_count, "folder_id": self.main_folder_id},
        )
        return FinalizeResult(
            status="finalized",
            folder_id=self.main_folder_id,
            folder_url=folder_url,
            uploaded_count=uploaded_count,
            residual_binary_detected=bool(affected),
            affected_ids=affected,
        )

    def _load_folder_names(self, items: list[OrderItem]) -> None:
        for item in items:
            for component, component_item in self.orders.list_components(item.product_id):
                self.component_names[component.id] = component_item.name
            for additional in self.orders.list_additionals(item.id):
                self.additional_names[additional.id] = additional.name

    def _folder_name(self, payload: dict[str, Any], product_name: Optional[str]) -> str:
        component_id = payload.get("componentId")
        if component_id in self.additional_names:
            return f"{self.additional_names[component_id]} (adicional)"
        if component_id in self.component_names:
            return self.component_names[component_id]
        return product_name or payload.get("customization_type") or "Customizacoes"

    async def _ensure_main_folder(self, order: Order) -> str:
        if self.main_folder_id:
            return self.main_folder_id
        folder_id = await self.storage.create_folder(main_folder_name(order))
        await self.storage.make_folder_public(folder_id)
        logger.info("finalize.main_folder_created", extra={"order_id": order.id, "folder_id": folder_id})
        self.main_folder_id = folder_id
        return folder_id

    async def _ensure_subfolder(self, order: Order, name: str) -> str:
        if name in self.subfolders:
            return self.subfolders[name]
        parent_id = await self._ensure_main_folder(order)
        folder_id = await self.storage.create_folder(name, parent_id)
        await self.storage.make_folder_public(folder_id)
        self.subfolders[name] = folder_id
        logger.info("finalize.subfolder_created", extra={"folder_name": name, "folder_id": folder_id})
        return folder_id

    async def _upload_all(
        self, record: OrderItemCustomization, candidates: list[AssetCandidate], folder_id: str
    ) -> list[UploadedAsset]:
        tasks = [
            asyncio.create_task(self.uploader.upload(candidate, customization_id=record.id, folder_id=folder_id))
            for candidate in candidates
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # Siblings of a failed upload must not keep writing into the folder.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _process(
        self, order: Order, record: OrderItemCustomization, product_name: Optional[str]
    ) -> tuple[int, bool, list[str]]:
        """Upload, sanitize and persist one customization.

        Returns (uploads, residual_left, transient URLs the stored value no longer references).
        """
        payload = parse_customization_value(record.value)
        candidates = extract_assets(payload)
        if not candidates:
            return 0, False, []

        folder_id = await self._ensure_subfolder(order, self._folder_name(payload, product_name))
        uploads = await self._upload_all(record, candidates, folder_id)

        sanitized, removed = sanitize_payload(payload, candidates, uploads)
        await self._fill_missing_label(record, sanitized)
        if removed:
            logger.info("finalize.binary_fields_removed", extra={"customization_id": record.id, "removed": removed})

        self.customizations.update(
            record.id,
            value=serialize_customization_value(sanitized),
            drive_folder_id=folder_id,
            drive_folder_url=self.storage.get_folder_url(folder_id),
        )
        still_referenced = set(iter_reference_urls(sanitized))
        released = [
            url
            for url in (*iter_preview_urls(payload), *(candidate.url for candidate in candidates))
            if url not in still_referenced
        ]
        return len(uploads), not self._verify_clean(record.id), released

    async def _fill_missing_label(self, record: OrderItemCustomization, payload: dict[str, Any]) -> None:
        customization_type = payload.get("customization_type")
        if payload.get("label_selected") or customization_type not in _LABELED_TYPES:
            return
        label = await self.labels.resolve(
            customization_type,
            payload,
            rule_id=record.customization_rule_id or payload.get("customizationRuleId"),
            selected_layout_id=payload.get("selected_layout_id"),
        )
        if label:
            apply_label(payload, customization_type, label)
            logger.info("finalize.label_recomputed", extra={"customization_id": record.id, "label": label})

    def _verify_clean(self, customization_id: str) -> bool:
        """Re-read the stored value; on residue run one scrub-and-resave pass."""
        stored = self.customizations.get_value(customization_id) or ""
        if not contains_data_uri(stored):
            return True

        logger.warning("finalize.residual_base64", extra={"customization_id": customization_id})
        parsed = parse_customization_value(stored)
        removed = strip_inline_binary(parsed)
        if not removed:
            return False
        self.customizations.update(customization_id, value=serialize_customization_value(parsed))
        if contains_data_uri(self.customizations.get_value(customization_id) or ""):
            logger.warning("finalize.resanitize_failed", extra={"customization_id": customization_id})
            return False
        logger.info(
            "finalize.resanitized",
            extra={"customization_id": customization_id, "removed": removed},
        )
        return True

    def _delete_transient_files(self, order_id: str, urls: list[str]) -> None:
        filenames = sorted({name for name in (transient_filename(url) for url in urls) if name})
        if not filenames:
            return
        self.temp_store.backup_files(filenames)
        result = self.temp_store.delete_files(filenames)
        logger.info(
            "finalize.temp_files_deleted",
            extra={"order_id": order_id, "deleted": result.deleted, "failed": result.failed},
        )


async def finalize_order_customizations(
    session: Session,
    order_id: str,
    *,
    storage: Optional[DurableStorage] = None,
    temp_store: Optional[TempFileStore] = None,
    uploader: Optional[AssetUploader] = None,
) -> FinalizeResult:
    finalizer = OrderFinalizer(session, storage=storage, temp_store=temp_store, uploader=uploader)
    return await finalizer.run(order_id)
