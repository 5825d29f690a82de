"""Rewrites finalized payloads so they only point at durable storage.

Replacement happens in two passes: a targeted pass that knows where each
extracted asset came from, then a recursive scrub over the whole tree for
binary fields and data URIs left behind by older payload shapes.
"""

from __future__ import annotations

import copy
from typing import Any, Sequence

from order_customizations.db.enums import CustomizationTypeEnum
from order_customizations.services.asset_extraction import AssetCandidate, get_path
from order_customizations.services.asset_upload import UploadedAsset
from order_customizations.services.payload_codec import BINARY_FIELD_NAMES, contains_data_uri, is_data_uri

_LAYOUT_URL_FIELDS = ("highQualityUrl", "high_quality_url")
_BINARY_KEYS = BINARY_FIELD_NAMES | {"preview_url"}


def _drop_keys(entry: Any, keys: Sequence[str]) -> None:
    if isinstance(entry, dict):
        for key in keys:
            entry.pop(key, None)


def _apply_layout_upload(payload: dict[str, Any], uploaded: UploadedAsset) -> None:
    for key in _LAYOUT_URL_FIELDS:
        payload.pop(key, None)
    text = payload.get("text")
    if isinstance(text, str) and text.startswith(("http://", "https://", "/", "data:")):
        payload.pop("text", None)

    artwork = payload.pop("finalArtwork", None)
    final_artwork = payload.get("final_artwork")
    merged: dict[str, Any] = {}
    for source in (artwork, final_artwork):
        if isinstance(source, dict):
            merged.update(source)
    _drop_keys(merged, tuple(_BINARY_KEYS))
    merged.update(
        {
            "google_drive_file_id": uploaded.id,
            "google_drive_url": uploaded.url,
            "mimeType": uploaded.media_type,
            "fileName": uploaded.filename,
        }
    )
    payload["final_artwork"] = merged

    artworks = payload.get("final_artworks")
    if isinstance(artworks, list):
        for entry in artworks:
            _drop_keys(entry, tuple(_BINARY_KEYS))
    _drop_keys(payload.get("image"), tuple(_BINARY_KEYS))


def _apply_entry_upload(entry: dict[str, Any], uploaded: UploadedAsset, url_key: str) -> None:
    _drop_keys(entry, (url_key, *BINARY_FIELD_NAMES))
    entry["google_drive_file_id"] = uploaded.id
    entry["google_drive_url"] = uploaded.url


def apply_uploads(
    payload: dict[str, Any],
    candidates: Sequence[AssetCandidate],
    uploads: Sequence[UploadedAsset],
) -> dict[str, Any]:
    """Return a copy of ``payload`` with each candidate's source replaced by its upload."""
    result = copy.deepcopy(payload)
    is_layout = result.get("customization_type") == CustomizationTypeEnum.DYNAMIC_LAYOUT.value
    for candidate, uploaded in zip(candidates, uploads):
        if is_layout:
            _apply_layout_upload(result, uploaded)
            continue
        entry = get_path(result, candidate.source[:-1])
        if isinstance(entry, dict):
            _apply_entry_upload(entry, uploaded, str(candidate.source[-1]))
    return result


def _is_embedded(value: Any) -> bool:
    return isinstance(value, str) and (is_data_uri(value) or contains_data_uri(value))


def strip_inline_binary(tree: Any) -> int:
    """Remove binary fields and data-URI strings anywhere in ``tree``, in place.

    Returns how many fields or list entries were removed.
    """
    removed = 0
    if isinstance(tree, dict):
        for key in list(tree.keys()):
            value = tree[key]
            if key in BINARY_FIELD_NAMES or _is_embedded(value):
                del tree[key]
                removed += 1
            elif isinstance(value, (dict, list)):
                removed += strip_inline_binary(value)
    elif isinstance(tree, list):
        for index in range(len(tree) - 1, -1, -1):
            value = tree[index]
            if _is_embedded(value):
                del tree[index]
                removed += 1
            elif isinstance(value, (dict, list)):
                removed += strip_inline_binary(value)
    return removed


def sanitize_payload(
    payload: dict[str, Any],
    candidates: Sequence[AssetCandidate] = (),
    uploads: Sequence[UploadedAsset] = (),
) -> tuple[dict[str, Any], int]:
    sanitized = apply_uploads(payload, candidates, uploads)
    removed = strip_inline_binary(sanitized)
    return sanitized, removed
