from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from order_customizations.db.models import Additional, Order, OrderItemAdditional
from order_customizations.db.repositories import OrderItemCustomizationsRepository
from order_customizations.errors import AssetTransferError
from order_customizations.services import finalization
from order_customizations.services.asset_upload import AssetUploader
from order_customizations.services.checkout_validation import validate_customization_files
from order_customizations.services.finalization import finalize_order_customizations, main_folder_name
from order_customizations.services.payload_codec import contains_data_uri, parse_customization_value

DATA_URI = "data:image/png;base64,iVBORw0KGgo="


def _finalize(db_session, order_id, fake_storage, temp_store):
    return asyncio.run(
        finalize_order_customizations(db_session, order_id, storage=fake_storage, temp_store=temp_store)
    )


def _layout_customization(catalog, add_customization, temp_store, filename="abc.png"):
    (temp_store.base_dir / filename).write_bytes(b"final-art")
    return add_customization(
        catalog.order_item.id,
        {
            "customization_type": "DYNAMIC_LAYOUT",
            "title": "Arte",
            "componentId": "C1",
            "final_artwork": {"preview_url": f"/uploads/temp/{filename}"},
        },
    )


def test_layout_artwork_moves_to_durable_storage(db_session, catalog, add_customization, fake_storage, temp_store):
    record = _layout_customization(catalog, add_customization, temp_store)

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.status == "finalized"
    assert result.uploaded_count == 1
    assert result.residual_binary_detected is False
    assert result.affected_ids == []
    assert result.folder_id == "folder-1"
    assert result.folder_url == "https://fake.storage/folders/folder-1"

    main_name, main_parent = fake_storage.folders[0]
    assert main_name.startswith("Pedido_Ana_Souza_")
    assert main_name.endswith(catalog.order.id[:8])
    assert main_parent is None
    assert fake_storage.folders[1] == ("Frame", "folder-1")
    assert fake_storage.public == ["folder-1", "folder-2"]
    assert fake_storage.uploads[0]["data"] == b"final-art"

    stored = OrderItemCustomizationsRepository(db_session).get(record.id)
    value = parse_customization_value(stored.value)
    assert "preview_url" not in value["final_artwork"]
    assert value["final_artwork"]["google_drive_file_id"] == "file-1"
    assert value["final_artwork"]["google_drive_url"] == "https://fake.storage/files/file-1"
    assert not contains_data_uri(stored.value)
    assert stored.drive_folder_id == "folder-2"
    assert stored.drive_folder_url == "https://fake.storage/folders/folder-2"

    assert not temp_store.exists("abc.png")
    assert [p.name.endswith("_abc.png") for p in temp_store.backup_dir.iterdir()] == [True]

    db_session.refresh(catalog.order)
    assert catalog.order.customizations_finalized is True
    assert catalog.order.drive_folder_id == "folder-1"


def test_finalizing_twice_uploads_once(db_session, catalog, add_customization, fake_storage, temp_store):
    _layout_customization(catalog, add_customization, temp_store)

    first = _finalize(db_session, catalog.order.id, fake_storage, temp_store)
    second = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert second.status == "already_finalized"
    assert second.uploaded_count == 0
    assert (second.folder_id, second.folder_url) == (first.folder_id, first.folder_url)
    assert len(fake_storage.uploads) == 1
    assert len(fake_storage.folders) == 2


def test_upload_failure_aborts_without_marking_order(
    db_session, catalog, add_customization, fake_storage, temp_store
):
    record = _layout_customization(catalog, add_customization, temp_store)
    fake_storage.fail_uploads = True

    with pytest.raises(AssetTransferError):
        _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    db_session.refresh(catalog.order)
    assert catalog.order.customizations_finalized is False
    assert temp_store.exists("abc.png")
    value = parse_customization_value(OrderItemCustomizationsRepository(db_session).get_value(record.id))
    assert value["final_artwork"]["preview_url"] == "/uploads/temp/abc.png"

    fake_storage.fail_uploads = False
    retried = _finalize(db_session, catalog.order.id, fake_storage, temp_store)
    assert retried.status == "finalized"
    assert retried.uploaded_count == 1


def test_order_without_media_is_left_untouched(db_session, catalog, add_customization, fake_storage, temp_store):
    add_customization(catalog.order_item.id, {"customization_type": "TEXT", "title": "Frase", "text": "Te amo"})

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.status == "empty"
    assert result.folder_id is None
    assert fake_storage.folders == []
    db_session.refresh(catalog.order)
    assert catalog.order.customizations_finalized is False


def test_subfolders_are_created_once_per_name(
    db_session, catalog, add_customization, fake_storage, temp_store, monkeypatch
):
    db_session.add_all(
        [
            Additional(id="A1", name="Cartão"),
            OrderItemAdditional(order_item_id=catalog.order_item.id, additional_id="A1"),
        ]
    )
    db_session.commit()
    for index in range(2):
        (temp_store.base_dir / f"p{index}.jpg").write_bytes(b"photo")
        add_customization(
            catalog.order_item.id,
            {
                "customization_type": "IMAGES",
                "title": f"Fotos {index}",
                "componentId": "C1",
                "photos": [{"preview_url": f"/uploads/temp/p{index}.jpg"}],
            },
        )
    add_customization(
        catalog.order_item.id,
        {"customization_type": "BASE_LAYOUT", "componentId": "A1", "images": [{"url": "https://cdn.example.com/c.jpg"}]},
    )

    async def fake_download(self, url):
        return b"remote"

    monkeypatch.setattr(AssetUploader, "_download", fake_download)

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.uploaded_count == 3
    assert [name for name, _ in fake_storage.folders[1:]] == ["Frame", "Cartão (adicional)"]


def test_residual_binary_is_healed_by_second_pass(
    db_session, catalog, add_customization, fake_storage, temp_store, monkeypatch
):
    record = _layout_customization(catalog, add_customization, temp_store)
    real_sanitize = finalization.sanitize_payload

    def leaky_sanitize(payload, candidates, uploads):
        sanitized, removed = real_sanitize(payload, candidates, uploads)
        sanitized["leftover"] = DATA_URI
        return sanitized, removed

    monkeypatch.setattr(finalization, "sanitize_payload", leaky_sanitize)

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.affected_ids == []
    assert result.residual_binary_detected is False
    assert not contains_data_uri(OrderItemCustomizationsRepository(db_session).get_value(record.id))


def test_unhealed_residue_is_reported(db_session, catalog, add_customization, fake_storage, temp_store, monkeypatch):
    record = _layout_customization(catalog, add_customization, temp_store)
    real_sanitize = finalization.sanitize_payload

    def leaky_sanitize(payload, candidates, uploads):
        sanitized, removed = real_sanitize(payload, candidates, uploads)
        sanitized["leftover"] = DATA_URI
        return sanitized, removed

    monkeypatch.setattr(finalization, "sanitize_payload", leaky_sanitize)
    monkeypatch.setattr(finalization, "strip_inline_binary", lambda tree: 0)

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.status == "finalized"
    assert result.residual_binary_detected is True
    assert result.affected_ids == [record.id]


def test_main_folder_name_is_sanitized():
    order = SimpleNamespace(id="0123456789abcdef", customer_name="Ana Souza & Cia")

    name = main_folder_name(order, now=datetime(2026, 1, 2, tzinfo=timezone.utc))

    assert name == "Pedido_Ana_Souza___Cia_2026-01-02_01234567"


def test_main_folder_name_truncates_customer_and_defaults():
    assert main_folder_name(SimpleNamespace(id="abcdefgh12", customer_name="x" * 60), now=datetime(2026, 1, 2)) == (
        f"Pedido_{'x' * 40}_2026-01-02_abcdefgh"
    )
    assert main_folder_name(Order(id="abcdefgh12", customer_name=None), now=datetime(2026, 1, 2)).startswith(
        "Pedido_Cliente_"
    )


def test_layout_slot_previews_survive_finalization(db_session, catalog, add_customization, fake_storage, temp_store):
    (temp_store.base_dir / "final.png").write_bytes(b"final")
    (temp_store.base_dir / "slot1.png").write_bytes(b"slot")
    record = add_customization(
        catalog.order_item.id,
        {
            "customization_type": "DYNAMIC_LAYOUT",
            "title": "Arte",
            "componentId": "C1",
            "final_artwork": {"preview_url": "/uploads/temp/final.png"},
            "images": [{"slot": "1", "preview_url": "/uploads/temp/slot1.png"}],
        },
    )

    def _files():
        return asyncio.run(
            validate_customization_files(db_session, catalog.order.id, storage=fake_storage, temp_store=temp_store)
        )

    assert _files() == {record.id: True}

    result = _finalize(db_session, catalog.order.id, fake_storage, temp_store)

    assert result.uploaded_count == 1
    assert not temp_store.exists("final.png")
    assert temp_store.exists("slot1.png")
    assert _files() == {record.id: True}


def test_failed_upload_cancels_sibling_uploads(db_session, catalog, add_customization, fake_storage, temp_store):
    for name in ("bad.jpg", "slow.jpg"):
        (temp_store.base_dir / name).write_bytes(b"photo")
    add_customization(
        catalog.order_item.id,
        {
            "customization_type": "IMAGES",
            "title": "Fotos",
            "photos": [
                {"preview_url": "/uploads/temp/bad.jpg", "original_name": "bad.jpg"},
                {"preview_url": "/uploads/temp/slow.jpg", "original_name": "slow.jpg"},
            ],
        },
    )
    completed = []

    class FlakyUploader:
        async def upload(self, candidate, *, customization_id, folder_id):
            if candidate.filename == "bad.jpg":
                raise AssetTransferError(message="upload failed")
            await asyncio.sleep(0.05)
            completed.append(candidate.filename)

    async def _run():
        with pytest.raises(AssetTransferError):
            await finalize_order_customizations(
                db_session, catalog.order.id, storage=fake_storage, temp_store=temp_store, uploader=FlakyUploader()
            )
        await asyncio.sleep(0.1)

    asyncio.run(_run())

    assert completed == []
    assert temp_store.exists("slow.jpg")
