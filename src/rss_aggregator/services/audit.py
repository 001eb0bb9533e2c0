# ABOUTME: Audit logger for administrative actions such as forced refreshes.
# ABOUTME: Write failures are logged and never propagate to the caller.

from typing import Any

import structlog

from rss_aggregator.models import RequestContext
from rss_aggregator.services.store import FeedStore

log = structlog.get_logger()


class AuditLogger:
    def __init__(self, store: FeedStore):
        self.store = store

    async def record(
        self,
        admin_id: str,
        action: str,
        target_type: str | None,
        target_id: str | None,
        details: dict[str, Any] | None,
        request_context: RequestContext | None = None,
    ) -> bool:
        """Store an audit entry. Returns False if it could not be written."""
        context = request_context or RequestContext()
        try:
            await self.store.record_admin_action(
                admin_id=admin_id,
                action=action,
                target_type=target_type,
                target_id=target_id,
                details=details,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
        except Exception as e:
            log.error("audit_log_failed", action=action, admin_id=admin_id, error=str(e))
            return False
        return True
