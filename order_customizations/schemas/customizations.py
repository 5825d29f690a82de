from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from order_customizations.db.enums import CustomizationTypeEnum


class ArtworkUpload(BaseModel):
    base64: Optional[str] = None
    mimeType: Optional[str] = None
    fileName: Optional[str] = None
    preview_url: Optional[str] = None


class SaveCustomizationRequest(BaseModel):
    customizationRuleId: Optional[str] = None
    customizationType: CustomizationTypeEnum
    title: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    selectedLayoutId: Optional[str] = None
    finalArtwork: Optional[ArtworkUpload] = None
    finalArtworks: Optional[list[ArtworkUpload]] = None


class UpdateCustomizationRequest(BaseModel):
    customizationRuleId: Optional[str] = None
    customizationType: Optional[CustomizationTypeEnum] = None
    title: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    selectedLayoutId: Optional[str] = None


class CustomizationResponse(BaseModel):
    id: str
    orderItemId: str
    customizationRuleId: Optional[str] = None
    value: dict[str, Any]
    driveFolderId: Optional[str] = None
    driveFolderUrl: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class OrderItemCustomizationsResponse(BaseModel):
    orderItemId: str
    productId: str
    productName: Optional[str] = None
    customizations: list[CustomizationResponse]


class FinalizeResponse(BaseModel):
    status: str
    folderId: Optional[str] = None
    folderUrl: Optional[str] = None
    uploadedCount: int
    residualBinaryDetected: bool
    affectedIds: list[str]


class MissingRequiredIssueResponse(BaseModel):
    orderItemId: str
    ruleId: str
    ruleName: str
    customizationType: str
    componentId: Optional[str] = None
    itemName: str


class InvalidCustomizationIssueResponse(BaseModel):
    orderItemId: str
    customizationId: str
    title: Optional[str] = None
    reason: str


class CheckoutValidationResponse(BaseModel):
    valid: bool
    files: dict[str, bool]
    hasFilledContent: bool
    missingRequired: list[MissingRequiredIssueResponse]
    invalidCustomizations: list[InvalidCustomizationIssueResponse]


class CleanupResponse(BaseModel):
    cleanedCount: int
    orderDeleted: bool


class AvailableCustomizationResponse(BaseModel):
    id: str
    name: str
    type: str
    isRequired: bool
    itemId: str
    itemName: str
    componentId: Optional[str] = None
    isAdditional: bool = False


class ReviewedCustomizationResponse(CustomizationResponse):
    ruleId: Optional[str] = None
    componentId: Optional[str] = None


class OrderItemReviewResponse(BaseModel):
    orderItemId: str
    productId: str
    productName: Optional[str] = None
    availableCustomizations: list[AvailableCustomizationResponse]
    filledCustomizations: list[ReviewedCustomizationResponse]
