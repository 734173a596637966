from .applier_repository import ApplierRepository

__all__ = ["ApplierRepository"]
