"""Typed views over the free-form customization payload.

The persisted value stays a plain JSON object; these models are read-only views
used where code needs to reason about a payload by type. Unknown and legacy keys
are kept in ``model_extra`` and every field tolerates junk input.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from order_customizations.db.enums import CustomizationTypeEnum
from order_customizations.services.payload_codec import is_inline_reference

_TEXT_FIELDS = (
    "customization_type",
    "title",
    "componentId",
    "customizationRuleId",
    "label_selected",
    "label",
    "text",
    "selected_option",
    "selected_option_id",
    "selected_option_label",
    "id",
    "previewUrl",
    "selected_item_label",
    "selected_layout_id",
    "layout_id",
    "high_quality_url",
    "highQualityUrl",
)
_LIST_FIELDS = ("options", "selected_options", "photos", "files", "final_artworks", "images")
_DICT_FIELDS = ("image", "final_artwork", "finalArtwork")


def _usable_url(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and not is_inline_reference(value)


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    customization_type: Optional[str] = None
    title: Optional[str] = None
    componentId: Optional[str] = None
    customizationRuleId: Optional[str] = None
    label_selected: Optional[str] = None

    @field_validator(*_TEXT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @field_validator(*_LIST_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _as_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator(*_DICT_FIELDS, mode="before", check_fields=False)
    @classmethod
    def _as_dict(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    def is_filled(self) -> bool:
        return bool(self.model_dump(exclude_none=True, exclude_defaults=True))


class TextPayload(_PayloadBase):
    text: Optional[str] = None

    def is_filled(self) -> bool:
        return bool(self.text and self.text.strip())


class MultipleChoicePayload(_PayloadBase):
    selected_option: Optional[str] = None
    selected_option_id: Optional[str] = None
    id: Optional[str] = None
    selected_option_label: Optional[str] = None
    label: Optional[str] = None
    options: list[Any] = []
    selected_options: list[Any] = []

    def selected_option_ref(self) -> Optional[str]:
        if self.selected_option:
            return self.selected_option
        if self.selected_options:
            first = self.selected_options[0]
            if isinstance(first, (str, int)):
                return str(first)
        return None

    def is_filled(self) -> bool:
        has_option = bool(self.selected_option or self.id or self.selected_option_id)
        has_label = bool(self.selected_option_label or self.label_selected or self.label)
        return has_option or has_label


class ImagesPayload(_PayloadBase):
    photos: list[Any] = []
    files: list[Any] = []

    def photo_urls(self) -> list[Optional[str]]:
        urls: list[Optional[str]] = []
        for photo in self.photos or self.files:
            if isinstance(photo, str):
                urls.append(photo)
            elif isinstance(photo, dict):
                urls.append(photo.get("preview_url") or photo.get("url") or photo.get("google_drive_url"))
            else:
                urls.append(None)
        return urls

    def is_filled(self) -> bool:
        return any(_usable_url(url) for url in self.photo_urls())


class DynamicLayoutPayload(_PayloadBase):
    image: Optional[dict[str, Any]] = None
    previewUrl: Optional[str] = None
    text: Optional[str] = None
    high_quality_url: Optional[str] = None
    highQualityUrl: Optional[str] = None
    final_artwork: Optional[dict[str, Any]] = None
    finalArtwork: Optional[dict[str, Any]] = None
    final_artworks: list[Any] = []
    fabricState: Any = None
    selected_item_label: Optional[str] = None
    label: Optional[str] = None
    selected_layout_id: Optional[str] = None
    layout_id: Optional[str] = None

    def artwork_url(self) -> Optional[str]:
        artwork = self.final_artwork or self.finalArtwork or {}
        first_artwork = self.final_artworks[0] if self.final_artworks else None
        candidates = [
            (self.image or {}).get("preview_url"),
            self.previewUrl,
            self.text,
            artwork.get("preview_url"),
            first_artwork.get("preview_url") if isinstance(first_artwork, dict) else None,
            artwork.get("google_drive_url"),
            self.high_quality_url or self.highQualityUrl,
        ]
        for candidate in candidates:
            if candidate:
                return candidate
        return None

    def is_filled(self) -> bool:
        has_artwork = _usable_url(self.artwork_url())
        has_label = bool(self.selected_item_label or self.label_selected or self.label)
        return has_artwork or bool(self.fabricState) or has_label


class GenericPayload(_PayloadBase):
    images: list[Any] = []


CustomizationPayload = Union[
    TextPayload, MultipleChoicePayload, ImagesPayload, DynamicLayoutPayload, GenericPayload
]

_VARIANTS: dict[str, type[_PayloadBase]] = {
    CustomizationTypeEnum.TEXT.value: TextPayload,
    CustomizationTypeEnum.MULTIPLE_CHOICE.value: MultipleChoicePayload,
    CustomizationTypeEnum.IMAGES.value: ImagesPayload,
    CustomizationTypeEnum.DYNAMIC_LAYOUT.value: DynamicLayoutPayload,
}


def coerce_payload(data: dict[str, Any], customization_type: Optional[str] = None) -> CustomizationPayload:
    type_tag = customization_type or data.get("customization_type")
    model = _VARIANTS.get(type_tag, GenericPayload) if isinstance(type_tag, str) else GenericPayload
    try:
        return model.model_validate(data)
    except ValidationError:
        return GenericPayload.model_construct(**data)
