from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from order_customizations.db.models import TemporaryCustomizationFile


class TemporaryFilesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, file_id: str) -> Optional[TemporaryCustomizationFile]:
        return self.session.get(TemporaryCustomizationFile, file_id)

    def get_by_path(self, file_path: str) -> Optional[TemporaryCustomizationFile]:
        stmt = select(TemporaryCustomizationFile).where(TemporaryCustomizationFile.file_path == file_path)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        file_path: str,
        mime_type: str,
        original_name: str,
        expires_at: Optional[datetime] = None,
    ) -> TemporaryCustomizationFile:
        record = TemporaryCustomizationFile(
            file_path=file_path,
            mime_type=mime_type,
            original_name=original_name,
            expires_at=expires_at,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def list_expired(self, now: Optional[datetime] = None) -> List[TemporaryCustomizationFile]:
        cutoff = now or datetime.now(timezone.utc)
        stmt = select(TemporaryCustomizationFile).where(
            TemporaryCustomizationFile.expires_at.is_not(None),
            TemporaryCustomizationFile.expires_at < cutoff,
        )
        return list(self.session.scalars(stmt).all())

    def delete(self, file_id: str) -> bool:
        record = self.get(file_id)
        if not record:
            return False
        self.session.delete(record)
        self.session.commit()
        return True
