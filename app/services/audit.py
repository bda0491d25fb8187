from app.services.base import BaseService
from app.models.audit_log import AuditLog
from typing import Optional
from decimal import Decimal
from datetime import date, datetime

class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        user_role: Optional[str],
        details: dict,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ):
        """
        Create a centralized audit log entry.
        Strictly append-only. Not committed here: the entry rides in the same
        unit of work as the action it describes and rolls back with it.
        """
        def sanitize(obj):
            if hasattr(obj, "model_dump"):
                return obj.model_dump(mode="json")
            if isinstance(obj, dict):
                return {k: sanitize(v) for k, v in obj.items()}
            if isinstance(obj, (list, tuple)):
                return [sanitize(i) for i in obj]
            if isinstance(obj, Decimal):
                return float(obj)
            if isinstance(obj, (date, datetime)):
                return obj.isoformat()
            if hasattr(obj, "value"):
                return obj.value
            return obj

        db_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            user_role=sanitize(user_role),
            details=sanitize(details),
            before_state=sanitize(before_state),
            after_state=sanitize(after_state)
        )
        self.db.add(db_log)
        return db_log

    # Static wrapper for backward compatibility
    @staticmethod
    def log(db, *args, **kwargs):
        service = AuditService(db)
        return service.log_action(*args, **kwargs)
