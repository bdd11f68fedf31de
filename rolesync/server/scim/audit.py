"""Audit trail for SCIM changes.

Persistence of audit records belongs to the host application; this module
only defines the record shape and the sink interface. Emitting is
fire-and-forget: a failing sink is logged and never fails the request.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol

from fastapi import Request

from rolesync.configs.constants import AuditAction
from rolesync.configs.constants import AuditScope
from rolesync.configs.constants import AuditTargetType
from rolesync.utils.logger import setup_logger

logger = setup_logger()


@dataclass(frozen=True)
class AuditEvent:
    scope: AuditScope
    action: AuditAction
    actor_id: str
    target_type: AuditTargetType
    target_id: str
    scope_id: str
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes each event as one structured JSON log line."""

    def record(self, event: AuditEvent) -> None:
        logger.info("audit %s", json.dumps(asdict(event), default=str))


def get_scim_audit_sink(request: Request) -> AuditSink:
    return request.app.state.scim_audit_sink


def emit_audit_event(sink: AuditSink, event: AuditEvent) -> None:
    try:
        sink.record(event)
    except Exception:
        logger.exception(
            "Failed to record audit event %s for %s",
            event.action.value,
            event.target_id,
        )
