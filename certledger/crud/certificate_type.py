from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from certledger.crud.base import CRUDBase
from certledger.models.certificate_type import CertificateType

class CRUDCertificateType(CRUDBase[CertificateType]):
    def get_active(self, db: Session, id: int) -> Optional[CertificateType]:
        return db.scalar(select(CertificateType).where(CertificateType.id == id, CertificateType.active.is_(True)))

    def list_active(self, db: Session) -> List[CertificateType]:
        return list(db.scalars(select(CertificateType).where(CertificateType.active.is_(True)).order_by(CertificateType.name)))

certificate_type = CRUDCertificateType(CertificateType)
