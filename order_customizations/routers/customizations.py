from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from order_customizations.db.deps import get_session
from order_customizations.db.models import OrderItemCustomization
from order_customizations.schemas.customizations import (
    AvailableCustomizationResponse,
    CheckoutValidationResponse,
    CleanupResponse,
    CustomizationResponse,
    FinalizeResponse,
    InvalidCustomizationIssueResponse,
    MissingRequiredIssueResponse,
    OrderItemCustomizationsResponse,
    OrderItemReviewResponse,
    ReviewedCustomizationResponse,
    SaveCustomizationRequest,
    UpdateCustomizationRequest,
)
from order_customizations.services.checkout_validation import validate_checkout, validate_customization_files
from order_customizations.services.cleanup import sweep_empty_customizations
from order_customizations.services.customizations import (
    CustomizationView,
    list_order_customizations,
    save_customization,
    update_customization,
)
from order_customizations.services.durable_storage import DurableStorage, get_durable_storage
from order_customizations.services.finalization import finalize_order_customizations
from order_customizations.services.payload_codec import parse_customization_value
from order_customizations.services.review import review_order
from order_customizations.services.temp_files import TempFileStore

router = APIRouter(tags=["customizations"])


def get_temp_store() -> TempFileStore:
    return TempFileStore()


def _serialize_record(record: OrderItemCustomization) -> CustomizationResponse:
    return CustomizationResponse(
        id=record.id,
        orderItemId=record.order_item_id,
        customizationRuleId=record.customization_rule_id,
        value=parse_customization_value(record.value),
        driveFolderId=record.drive_folder_id,
        driveFolderUrl=record.drive_folder_url,
        createdAt=record.created_at,
        updatedAt=record.updated_at,
    )


def _serialize_view(view: CustomizationView) -> CustomizationResponse:
    return CustomizationResponse(
        id=view.id,
        orderItemId=view.order_item_id,
        customizationRuleId=view.customization_rule_id,
        value=view.value,
        driveFolderId=view.drive_folder_id,
        driveFolderUrl=view.drive_folder_url,
        createdAt=view.created_at,
        updatedAt=view.updated_at,
    )


@router.post(
    "/orders/{order_id}/items/{item_id}/customizations",
    status_code=status.HTTP_201_CREATED,
    response_model=CustomizationResponse,
)
async def save_order_item_customization(
    order_id: str,
    item_id: str,
    payload: SaveCustomizationRequest,
    session: Session = Depends(get_session),
    temp_store: TempFileStore = Depends(get_temp_store),
):
    record = await save_customization(
        session,
        temp_store=temp_store,
        order_id=order_id,
        order_item_id=item_id,
        customization_type=payload.customizationType.value,
        title=payload.title,
        data=payload.data,
        rule_id=payload.customizationRuleId,
        selected_layout_id=payload.selectedLayoutId,
        final_artwork=payload.finalArtwork.model_dump(exclude_none=True) if payload.finalArtwork else None,
        final_artworks=[artwork.model_dump(exclude_none=True) for artwork in payload.finalArtworks or []],
    )
    return _serialize_record(record)


@router.patch("/customizations/{customization_id}", response_model=CustomizationResponse)
async def update_order_item_customization(
    customization_id: str,
    payload: UpdateCustomizationRequest,
    session: Session = Depends(get_session),
    temp_store: TempFileStore = Depends(get_temp_store),
):
    record = await update_customization(
        session,
        customization_id,
        temp_store=temp_store,
        data=payload.data,
        title=payload.title,
        customization_type=payload.customizationType.value if payload.customizationType else None,
        rule_id=payload.customizationRuleId,
        selected_layout_id=payload.selectedLayoutId,
    )
    return _serialize_record(record)


@router.get("/orders/{order_id}/customizations", response_model=list[OrderItemCustomizationsResponse])
def list_customizations(order_id: str, session: Session = Depends(get_session)):
    views = list_order_customizations(session, order_id)
    return [
        OrderItemCustomizationsResponse(
            orderItemId=view.order_item_id,
            productId=view.product_id,
            productName=view.product_name,
            customizations=[_serialize_view(entry) for entry in view.customizations],
        )
        for view in views
    ]


@router.post("/orders/{order_id}/customizations/finalize", response_model=FinalizeResponse)
async def finalize_customizations(
    order_id: str,
    session: Session = Depends(get_session),
    storage: DurableStorage = Depends(get_durable_storage),
    temp_store: TempFileStore = Depends(get_temp_store),
):
    result = await finalize_order_customizations(session, order_id, storage=storage, temp_store=temp_store)
    return FinalizeResponse(
        status=result.status,
        folderId=result.folder_id,
        folderUrl=result.folder_url,
        uploadedCount=result.uploaded_count,
        residualBinaryDetected=result.residual_binary_detected,
        affectedIds=result.affected_ids,
    )


@router.get("/orders/{order_id}/customizations/validate", response_model=CheckoutValidationResponse)
async def validate_order_customizations(
    order_id: str,
    session: Session = Depends(get_session),
    storage: DurableStorage = Depends(get_durable_storage),
    temp_store: TempFileStore = Depends(get_temp_store),
):
    result = await validate_checkout(session, order_id, storage=storage, temp_store=temp_store)
    return CheckoutValidationResponse(
        valid=result.valid,
        files=result.files,
        hasFilledContent=result.has_filled_content,
        missingRequired=[
            MissingRequiredIssueResponse(
                orderItemId=issue.order_item_id,
                ruleId=issue.rule_id,
                ruleName=issue.rule_name,
                customizationType=issue.customization_type,
                componentId=issue.component_id,
                itemName=issue.item_name,
            )
            for issue in result.missing_required
        ],
        invalidCustomizations=[
            InvalidCustomizationIssueResponse(
                orderItemId=issue.order_item_id,
                customizationId=issue.customization_id,
                title=issue.title,
                reason=issue.reason,
            )
            for issue in result.invalid_customizations
        ],
    )


@router.get("/orders/{order_id}/customizations/files")
async def validate_order_customization_files(
    order_id: str,
    session: Session = Depends(get_session),
    storage: DurableStorage = Depends(get_durable_storage),
    temp_store: TempFileStore = Depends(get_temp_store),
) -> dict:
    files = await validate_customization_files(session, order_id, storage=storage, temp_store=temp_store)
    return {"files": files}


@router.post("/orders/{order_id}/customizations/cleanup", response_model=CleanupResponse)
def cleanup_order_customizations(order_id: str, session: Session = Depends(get_session)):
    result = sweep_empty_customizations(session, order_id)
    return CleanupResponse(cleanedCount=result.cleaned_count, orderDeleted=result.order_deleted)


@router.get("/orders/{order_id}/customizations/review", response_model=list[OrderItemReviewResponse])
def review_order_customizations(order_id: str, session: Session = Depends(get_session)):
    return [
        OrderItemReviewResponse(
            orderItemId=review.order_item_id,
            productId=review.product_id,
            productName=review.product_name,
            availableCustomizations=[
                AvailableCustomizationResponse(
                    id=rule.rule_id,
                    name=rule.name,
                    type=rule.type,
                    isRequired=rule.is_required,
                    itemId=rule.item_id,
                    itemName=rule.item_name,
                    componentId=rule.component_id,
                    isAdditional=rule.is_additional,
                )
                for rule in review.available
            ],
            filledCustomizations=[
                ReviewedCustomizationResponse(
                    **_serialize_view(entry.view).model_dump(),
                    ruleId=entry.rule_id,
                    componentId=entry.component_id,
                )
                for entry in review.filled
            ],
        )
        for review in review_order(session, order_id)
    ]
