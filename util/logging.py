"""
Structured logging for resolution, synchronization and administrative operations.
"""

import logging
from typing import Any, Dict, List

class StructuredLogger:
    """Structured logger for verifier operations including sync runs and list updates."""

    def __init__(self, name: str = "hs_verifier"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("skipped", "degraded", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_resolution(self, query: str, code: str, match_kind: str, restriction: str = "none"):
        """Log a single code resolution."""
        details = {"query": query, "code": code, "match_kind": match_kind}
        if restriction != "none":
            details["restriction"] = restriction
        self.log_operation("resolve", "success", details)

    def log_store_operation(self, operation: str, key: str, size: int = None, status: str = "success"):
        """Log a key-value store operation."""
        details = {"key": key}
        if size is not None:
            details["size"] = size
        self.log_operation(f"store.{operation}", status, details)

    def log_sync_page(self, page: int, total_pages: int, records: int = 0, status: str = "success", error: str = None):
        """Log the outcome of fetching one upstream page."""
        details = {"page": f"{page}/{total_pages}", "records": records}
        if error:
            details["error"] = error[:200]
        self.log_operation("sync.page", status, details)

    def log_sync_summary(self, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log the end of a sync run."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Sync completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Sync failed after {duration_ms}ms"

        self.log_operation("sync.run", status, log_details)

    def log_status_update(self, list_type: str, submitted: int, accepted: int, updated_by: str = None):
        """Log a wholesale replacement of a restriction list."""
        log_details = {
            "list_type": list_type,
            "submitted": submitted,
            "accepted": accepted,
            "rejected": submitted - accepted
        }
        if updated_by:
            log_details["updated_by"] = updated_by
        self.log_operation("status_list.replaced", "success", log_details)

    def log_cache_refresh(self, records: int, status: str = "success", error: str = None):
        """Log a code table cache refresh."""
        details = {"records": records}
        if error:
            details["error"] = error[:100]
        self.log_operation("cache.refresh", status, details)

    def log_scheduler_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log scheduled task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Scheduled task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Scheduled task '{task_name}' failed after {duration_ms}ms"

        self.log_operation(f"scheduler.{task_name}", status, log_details)

    def log_auth_failure(self, endpoint: str, reason: str):
        """Log a rejected administrative request."""
        self.log_operation("auth", "rejected", {"endpoint": endpoint, "reason": reason})

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = ['token', 'authorization', 'secret', 'password']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k.lower() not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        if len(payload) > 10:
            return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload[:10]] + [f"... ({len(payload) - 10} more)"]
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
