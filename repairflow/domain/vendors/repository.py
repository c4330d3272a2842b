"""Vendor repository - Database operations for parts vendors"""

from sqlalchemy.orm import Session

from ...models import Vendor


class VendorRepository:
    """Repository for vendor database operations"""

    @staticmethod
    def get_vendors(db: Session) -> list[Vendor]:
        return db.query(Vendor).order_by(Vendor.name.asc()).all()
