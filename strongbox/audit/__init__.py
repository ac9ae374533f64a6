"""Best-effort audit trail."""

from strongbox.audit.logger import DatabaseAuditor, LoggingAuditor, log_event, query_log

__all__ = ["DatabaseAuditor", "LoggingAuditor", "log_event", "query_log"]
