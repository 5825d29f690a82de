from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence, Union

from order_customizations.db.enums import CustomizationTypeEnum
from order_customizations.services.payload_codec import is_inline_reference

PathKey = Union[str, int]

# Ordered by preference: the best rendering of the finished layout comes first.
LAYOUT_ARTWORK_FIELDS: tuple[tuple[PathKey, ...], ...] = (
    ("highQualityUrl",),
    ("high_quality_url",),
    ("final_artwork", "preview_url"),
    ("finalArtwork", "preview_url"),
    ("final_artworks", 0, "preview_url"),
    ("image", "preview_url"),
    ("text",),
)
REFERENCE_URL_KEYS = ("preview_url", "url", "google_drive_url")


@dataclass(frozen=True)
class AssetCandidate:
    url: str
    filename: str
    media_type: str
    # Location of the field that supplied ``url`` inside the payload.
    source: tuple[PathKey, ...]


def get_path(payload: Any, path: Sequence[PathKey]) -> Any:
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or key >= len(current):
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
    return current


def _looks_like_url(value: str) -> bool:
    return value.startswith(("http://", "https://", "/"))


def _usable(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip()) and not is_inline_reference(value)


def _layout_candidate(payload: dict[str, Any]) -> Optional[AssetCandidate]:
    for path in LAYOUT_ARTWORK_FIELDS:
        value = get_path(payload, path)
        if not _usable(value):
            continue
        if path == ("text",) and not _looks_like_url(value):
            continue
        return AssetCandidate(
            url=value,
            filename=f"design-final-{int(time.time() * 1000)}.png",
            media_type="image/png",
            source=path,
        )
    return None


def _photo_candidates(payload: dict[str, Any]) -> list[AssetCandidate]:
    photos = payload.get("photos")
    if not isinstance(photos, list):
        return []
    candidates: list[AssetCandidate] = []
    for index, photo in enumerate(photos):
        if not isinstance(photo, dict):
            continue
        key = next((k for k in ("preview_url", "base64", "base64Data") if photo.get(k)), None)
        if key is None or not _usable(photo[key]):
            continue
        candidates.append(
            AssetCandidate(
                url=photo[key],
                filename=photo.get("original_name") or photo.get("fileName") or f"photo-{index + 1}.jpg",
                media_type=photo.get("mime_type") or photo.get("mimeType") or "image/jpeg",
                source=("photos", index, key),
            )
        )
    return candidates


def _slot_image_candidates(payload: dict[str, Any]) -> list[AssetCandidate]:
    images = payload.get("images")
    if not isinstance(images, list):
        return []
    candidates: list[AssetCandidate] = []
    for index, image in enumerate(images):
        if not isinstance(image, dict):
            continue
        key = next((k for k in ("url", "base64", "base64Data") if image.get(k)), None)
        if key is None or not _usable(image[key]):
            continue
        slot = image.get("slot") or index
        candidates.append(
            AssetCandidate(
                url=image[key],
                filename=image.get("fileName") or image.get("original_name") or f"layout-slot-{slot}.jpg",
                media_type=image.get("mimeType") or image.get("mime_type") or "image/jpeg",
                source=("images", index, key),
            )
        )
    return candidates


def extract_assets(payload: dict[str, Any]) -> list[AssetCandidate]:
    """List the media a payload still references outside durable storage, in upload order."""
    customization_type = payload.get("customization_type")
    candidates: list[AssetCandidate] = []
    if customization_type == CustomizationTypeEnum.DYNAMIC_LAYOUT.value:
        layout = _layout_candidate(payload)
        if layout:
            candidates.append(layout)
        return candidates
    if customization_type == CustomizationTypeEnum.IMAGES.value:
        candidates.extend(_photo_candidates(payload))
    candidates.extend(_slot_image_candidates(payload))
    return candidates


def iter_preview_urls(payload: dict[str, Any]) -> Iterator[str]:
    """URLs at the known preview positions: photos, artwork previews, canvas preview."""
    photos = payload.get("photos")
    if isinstance(photos, list):
        for photo in photos:
            if isinstance(photo, dict) and isinstance(photo.get("preview_url"), str):
                yield photo["preview_url"]
    for path in (("final_artwork", "preview_url"), ("finalArtwork", "preview_url"), ("image", "preview_url")):
        value = get_path(payload, path)
        if isinstance(value, str):
            yield value
    artworks = payload.get("final_artworks")
    if isinstance(artworks, list):
        for artwork in artworks:
            if isinstance(artwork, dict) and isinstance(artwork.get("preview_url"), str):
                yield artwork["preview_url"]
    images = payload.get("images")
    if isinstance(images, list):
        for image in images:
            if isinstance(image, dict) and isinstance(image.get("preview_url"), str):
                yield image["preview_url"]


def dropped_preview_urls(previous: dict[str, Any], current: dict[str, Any]) -> list[str]:
    """Preview URLs present in ``previous`` that ``current`` no longer references."""
    kept = set(iter_preview_urls(current))
    return [url for url in iter_preview_urls(previous) if url not in kept]


def iter_reference_urls(tree: Any) -> Iterator[str]:
    """Every stored-file URL string anywhere in the tree."""
    if isinstance(tree, list):
        for entry in tree:
            yield from iter_reference_urls(entry)
    elif isinstance(tree, dict):
        for key in REFERENCE_URL_KEYS:
            value = tree.get(key)
            if isinstance(value, str) and value:
                yield value
        for value in tree.values():
            if isinstance(value, (dict, list)):
                yield from iter_reference_urls(value)
