import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Optional
from uuid import uuid4

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

_STORAGE_DIR = Path(tempfile.mkdtemp(prefix="order-customizations-"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_order_customizations.db")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")
os.environ.setdefault("STORAGE_ROOT", str(_STORAGE_DIR / "storage"))
os.environ.setdefault("LEGACY_TEMP_UPLOADS_DIR", str(_STORAGE_DIR / "uploads" / "temp"))
os.environ.setdefault("CUSTOMIZATIONS_DIR", str(_STORAGE_DIR / "images" / "customizations"))
os.environ.setdefault("DURABLE_STORAGE_BACKEND", "local")

from fastapi.testclient import TestClient  # noqa: E402

from order_customizations.db.base import Base, SessionLocal, init_db  # noqa: E402
from order_customizations.db.deps import get_session  # noqa: E402
from order_customizations.db.enums import CustomizationTypeEnum, OrderStatusEnum  # noqa: E402
from order_customizations.db.models import (  # noqa: E402
    CustomizationRule,
    Item,
    Order,
    OrderItem,
    OrderItemCustomization,
    Product,
    ProductComponent,
)
from order_customizations.errors import DurableStorageError  # noqa: E402
from order_customizations.main import app  # noqa: E402
from order_customizations.routers.customizations import get_temp_store  # noqa: E402
from order_customizations.services.durable_storage import (  # noqa: E402
    DurableStorage,
    StoredFile,
    get_durable_storage,
)
from order_customizations.services.payload_codec import serialize_customization_value  # noqa: E402
from order_customizations.services.temp_files import TempFileStore  # noqa: E402


def _clear_tables(session) -> None:
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()
    _clear_tables(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear_tables(session)
        session.close()


@pytest.fixture()
def temp_store(tmp_path):
    return TempFileStore(
        tmp_path / "temp",
        legacy_dir=tmp_path / "legacy",
        backup_dir=tmp_path / "backup",
    )


class FakeDurableStorage(DurableStorage):
    def __init__(self) -> None:
        self.folders: list[tuple[str, Optional[str]]] = []
        self.public: list[str] = []
        self.uploads: list[dict] = []
        self.fail_uploads = False

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        folder_id = f"folder-{len(self.folders) + 1}"
        self.folders.append((name, parent_id))
        return folder_id

    async def make_folder_public(self, folder_id: str) -> None:
        self.public.append(folder_id)

    async def upload_buffer(self, data: bytes, filename: str, folder_id: str, media_type: str) -> StoredFile:
        if self.fail_uploads:
            raise DurableStorageError(message=f"upload failed for {filename}")
        file_id = f"file-{len(self.uploads) + 1}"
        self.uploads.append(
            {"id": file_id, "data": data, "filename": filename, "folder_id": folder_id, "media_type": media_type}
        )
        return StoredFile(id=file_id, url=f"https://fake.storage/files/{file_id}")

    def get_folder_url(self, folder_id: str) -> str:
        return f"https://fake.storage/folders/{folder_id}"

    def owns_url(self, url: str) -> bool:
        return url.startswith("https://fake.storage/")

    async def file_exists(self, *, url: Optional[str] = None, file_id: Optional[str] = None) -> bool:
        known_ids = {upload["id"] for upload in self.uploads}
        if file_id:
            return file_id in known_ids
        return bool(url) and url.rsplit("/", 1)[-1] in known_ids


@pytest.fixture()
def fake_storage():
    return FakeDurableStorage()


@pytest.fixture()
def api_client(db_session, fake_storage, temp_store):
    def _session_override():
        yield db_session

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_durable_storage] = lambda: fake_storage
    app.dependency_overrides[get_temp_store] = lambda: temp_store
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def catalog(db_session):
    """One pending order with one item whose product has a 'Frame' component (C1)
    carrying the required choice rule 'Frame Color' (R1)."""
    product = Product(id="P1", name="Porta-retrato")
    frame = Item(id="I1", name="Frame")
    component = ProductComponent(id="C1", product_id=product.id, item_id=frame.id)
    rule = CustomizationRule(
        id="R1",
        name="Frame Color",
        type=CustomizationTypeEnum.MULTIPLE_CHOICE,
        is_required=True,
        item_id=frame.id,
        customization_data={"options": [{"id": "red", "label": "Red"}, {"id": "blue", "label": "Blue"}]},
    )
    order = Order(id=str(uuid4()), customer_name="Ana Souza", status=OrderStatusEnum.PENDING)
    order_item = OrderItem(id=str(uuid4()), order_id=order.id, product_id=product.id)
    db_session.add_all([product, frame, component, rule, order, order_item])
    db_session.commit()
    return SimpleNamespace(
        product=product,
        item=frame,
        component=component,
        rule=rule,
        order=order,
        order_item=order_item,
    )


@pytest.fixture()
def add_customization(db_session):
    def _add(order_item_id: str, value: dict, *, rule_id: Optional[str] = None) -> OrderItemCustomization:
        record = OrderItemCustomization(
            order_item_id=order_item_id,
            customization_rule_id=rule_id,
            value=serialize_customization_value(value),
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _add
