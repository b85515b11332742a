"""Tests unitaires du journal d'audit."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql

from app.models.audit import AuditLog
from app.services.audit_service import SYSTEM_ACTOR, list_audit_logs, record_audit


class TestRecordAudit:
    def test_entry_added_to_session(self):
        db = MagicMock()
        tenant_id = uuid.uuid4()
        sale_id = uuid.uuid4()

        entry = record_audit(
            db,
            action="sale_refunded",
            entity_type="sale",
            entity_id=sale_id,
            details={"amount": "450.00"},
            created_by=uuid.UUID(int=7),
            tenant_id=tenant_id,
        )

        db.add.assert_called_once_with(entry)
        assert entry.entity_id == str(sale_id)
        assert entry.created_by == str(uuid.UUID(int=7))
        assert entry.tenant_id == tenant_id
        db.commit.assert_not_called()

    def test_system_defaults(self):
        entry = record_audit(MagicMock(), "webhook_error", "webhook", "evt_1")

        assert entry.created_by == SYSTEM_ACTOR
        assert entry.details == {}
        assert entry.tenant_id is None


class TestListAuditLogs:
    async def test_filtered_and_paginated(self):
        tenant_id = uuid.uuid4()
        row = AuditLog(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            action="payment_completed",
            entity_type="tenant",
            entity_id=str(tenant_id),
            details={"plan_type": "pro"},
            created_by=SYSTEM_ACTOR,
            created_at=datetime.now(UTC),
        )
        db = AsyncMock()
        db.scalar.return_value = 11
        result = MagicMock()
        result.scalars.return_value.all.return_value = [row]
        db.execute.return_value = result

        logs = await list_audit_logs(db, tenant_id, entity_type="tenant", skip=10, limit=10)

        assert logs.total == 11
        assert [item.action for item in logs.items] == ["payment_completed"]
        assert logs.items[0].details == {"plan_type": "pro"}
        query = str(db.execute.call_args.args[0].compile(dialect=postgresql.dialect()))
        assert "audit_logs.entity_type = " in query
        assert "ORDER BY audit_logs.created_at DESC" in query

    async def test_empty(self):
        db = AsyncMock()
        db.scalar.return_value = None
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        db.execute.return_value = result

        logs = await list_audit_logs(db, uuid.uuid4())

        assert logs.total == 0
        assert logs.items == []
