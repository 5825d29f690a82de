from __future__ import annotations

from order_customizations.db.models import Order
from order_customizations.services.payload_codec import parse_customization_value


def _save(api_client, catalog, body):
    return api_client.post(f"/orders/{catalog.order.id}/items/{catalog.order_item.id}/customizations", json=body)


def test_health(api_client):
    assert api_client.get("/health").json() == {"ok": True}


def test_save_returns_camel_case_record_with_label(api_client, catalog):
    response = _save(
        api_client,
        catalog,
        {
            "customizationRuleId": "R1",
            "customizationType": "MULTIPLE_CHOICE",
            "title": "Frame Color",
            "data": {"selected_option": "blue", "componentId": "C1"},
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["orderItemId"] == catalog.order_item.id
    assert body["value"]["label_selected"] == "Blue"
    assert body["value"]["componentId"] == "C1"
    assert "createdAt" in body


def test_save_then_validate_then_finalize(api_client, catalog, fake_storage, temp_store):
    (temp_store.base_dir / "art.png").write_bytes(b"art")
    _save(
        api_client,
        catalog,
        {
            "customizationRuleId": "R1",
            "customizationType": "MULTIPLE_CHOICE",
            "title": "Frame Color",
            "data": {"selected_option": "red", "componentId": "C1"},
        },
    )
    _save(
        api_client,
        catalog,
        {
            "customizationType": "IMAGES",
            "title": "Fotos",
            "data": {"componentId": "C1", "photos": [{"preview_url": "/uploads/temp/art.png"}]},
        },
    )

    validation = api_client.get(f"/orders/{catalog.order.id}/customizations/validate").json()
    assert validation["valid"] is True
    assert validation["hasFilledContent"] is True
    assert validation["missingRequired"] == []
    assert all(validation["files"].values())

    finalized = api_client.post(f"/orders/{catalog.order.id}/customizations/finalize").json()
    assert finalized["status"] == "finalized"
    assert finalized["uploadedCount"] == 1
    assert finalized["folderId"] == "folder-1"
    assert finalized["residualBinaryDetected"] is False

    listed = api_client.get(f"/orders/{catalog.order.id}/customizations").json()
    assert listed[0]["productName"] == "Porta-retrato"
    photos = [
        entry["value"]["photos"] for entry in listed[0]["customizations"] if entry["value"].get("photos")
    ][0]
    assert photos == [{"google_drive_file_id": "file-1", "google_drive_url": "https://fake.storage/files/file-1"}]

    files = api_client.get(f"/orders/{catalog.order.id}/customizations/files").json()
    assert all(files["files"].values())


def test_validate_reports_missing_required_rule(api_client, catalog):
    body = api_client.get(f"/orders/{catalog.order.id}/customizations/validate").json()

    assert body["valid"] is False
    assert body["missingRequired"] == [
        {
            "orderItemId": catalog.order_item.id,
            "ruleId": "R1",
            "ruleName": "Frame Color",
            "customizationType": "MULTIPLE_CHOICE",
            "componentId": "C1",
            "itemName": "Frame",
        }
    ]


def test_patch_updates_title(api_client, catalog):
    created = _save(
        api_client,
        catalog,
        {"customizationType": "TEXT", "title": "Nome", "data": {"text": "Ana"}},
    ).json()

    response = api_client.patch(f"/customizations/{created['id']}", json={"title": "Nome gravado"})

    assert response.status_code == 200
    assert response.json()["value"]["title"] == "Nome gravado"
    assert response.json()["value"]["text"] == "Ana"


def test_cleanup_deletes_empty_pending_order(api_client, catalog, add_customization, db_session):
    add_customization(catalog.order_item.id, {"data": {}})

    body = api_client.post(f"/orders/{catalog.order.id}/customizations/cleanup").json()

    assert body == {"cleanedCount": 1, "orderDeleted": True}
    db_session.expire_all()
    assert db_session.get(Order, catalog.order.id) is None


def test_unknown_resources_return_404(api_client, catalog):
    assert api_client.get("/orders/missing/customizations").status_code == 404
    assert api_client.post("/orders/missing/customizations/finalize").status_code == 404
    assert api_client.patch("/customizations/missing", json={"title": "x"}).status_code == 404
    response = _save(
        api_client,
        catalog,
        {"customizationType": "TEXT", "title": "Nome", "data": {}},
    )
    assert response.status_code == 201
    other = api_client.post(
        f"/orders/missing/items/{catalog.order_item.id}/customizations",
        json={"customizationType": "TEXT", "title": "Nome", "data": {}},
    )
    assert other.status_code == 404
    assert "not found" in other.json()["detail"]


def test_invalid_requests_are_rejected(api_client, catalog):
    assert _save(api_client, catalog, {"customizationType": "TEXT", "title": ""}).status_code == 422
    assert _save(api_client, catalog, {"customizationType": "NOPE", "title": "x"}).status_code == 422
    bad_inline = _save(
        api_client,
        catalog,
        {"customizationType": "TEXT", "title": "x", "finalArtwork": {"base64": "data:image/png;base64"}},
    )
    assert bad_inline.status_code == 400


def test_saved_value_round_trips_through_listing(api_client, catalog):
    created = _save(
        api_client,
        catalog,
        {"customizationType": "TEXT", "title": "Nome", "data": {"text": "Oi"}},
    ).json()

    listed = api_client.get(f"/orders/{catalog.order.id}/customizations").json()
    stored = listed[0]["customizations"][0]

    assert stored["id"] == created["id"]
    assert parse_customization_value(stored["value"])["text"] == "Oi"


def test_review_lists_available_rules_and_filled_values(api_client, catalog):
    _save(
        api_client,
        catalog,
        {
            "customizationRuleId": "R1:C1",
            "customizationType": "MULTIPLE_CHOICE",
            "title": "Frame Color",
            "data": {"selected_option": "red"},
        },
    )

    response = api_client.get(f"/orders/{catalog.order.id}/customizations/review")

    assert response.status_code == 200
    [item] = response.json()
    assert item["availableCustomizations"] == [
        {
            "id": "R1",
            "name": "Frame Color",
            "type": "MULTIPLE_CHOICE",
            "isRequired": True,
            "itemId": "I1",
            "itemName": "Frame",
            "componentId": "C1",
            "isAdditional": False,
        }
    ]
    [filled] = item["filledCustomizations"]
    assert filled["ruleId"] == "R1"
    assert filled["componentId"] == "C1"
    assert filled["value"]["label_selected"] == "Red"
