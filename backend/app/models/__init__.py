from app.models.hierarchy import Site, Cell, Equipment, CellType, EquipmentType
from app.models.plc import PLC, Tag
from app.models.import_history import ImportHistory, BackgroundJob, ImportStatus, JobStatus
from app.models.audit import AuditLog

__all__ = [
    "Site", "Cell", "Equipment", "CellType", "EquipmentType",
    "PLC", "Tag",
    "ImportHistory", "BackgroundJob", "ImportStatus", "JobStatus",
    "AuditLog",
]
