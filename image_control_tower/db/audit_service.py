"""
Audit log service.

Entries are added to the caller's session and committed with the change they
describe, so a write and its audit entry land together or not at all.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..images.primitives import generate_ulid
from .audit_models import AuditLogModel


class AuditService:
    """Records audit entries for image, signature and stream writes.

    Usage:
        audit = AuditService(db_session, actor_kind="controller", actor_id="import-controller")
        audit.log_create("ImageStream", "default/app", stream_dict)
        db_session.commit()
    """

    def __init__(
        self,
        db: Session,
        actor_kind: str = "system",
        actor_id: str = "unknown",
        trace_id: Optional[str] = None,
    ):
        self.db = db
        self.actor_kind = actor_kind
        self.actor_id = actor_id
        self.trace_id = trace_id

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        note: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=datetime.now(timezone.utc),
            actor_kind=self.actor_kind,
            actor_id=self.actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=self.trace_id,
        )
        self.db.add(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity."""
        return self._record("created", entity_kind, entity_id, None, after, note)

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log an update to an entity."""
        return self._record("updated", entity_kind, entity_id, before, after, note)

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a change to an entity's status (import outcomes, verifications)."""
        return self._record("status_changed", entity_kind, entity_id, before, after, note)

    def log_tag(
        self,
        stream_id: str,
        tag: str,
        image: str,
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a pushed image being bound to a stream tag."""
        return self._record(
            "tagged",
            "ImageStream",
            stream_id,
            None,
            {"tag": tag, "image": image},
            note or f"Tagged {tag} -> {image}",
        )

    def log_prune(self, stream_id: str, tags: List[str]) -> AuditLogModel:
        """Log removal of tag histories from a stream's status."""
        return self._record(
            "pruned",
            "ImageStream",
            stream_id,
            {"tags": list(tags)},
            None,
            f"Pruned {len(tags)} tag(s)",
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the deletion of an entity."""
        return self._record("deleted", entity_kind, entity_id, before, None, note)

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_action(
        self,
        action: str,
        entity_kind: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit entries for one action type, newest first."""
        query = self.db.query(AuditLogModel).filter(AuditLogModel.action == action)
        if entity_kind:
            query = query.filter(AuditLogModel.entity_kind == entity_kind)
        return (
            query.order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
