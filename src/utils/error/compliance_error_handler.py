import logging
from typing import Any, Dict, Optional

from src.utils.error.compliance_error import ComplianceError, ErrorCategory, ErrorSeverity


class ComplianceErrorHandler:
    """Converts failures into error records and logs them by severity"""

    def __init__(self, logger: logging.Logger, config: Optional[Dict[str, Any]] = None):
        self.logger = logger
        self.config = config or {}
        self.error_counts: Dict[str, int] = {}

    def handle_error(self, error, context: Optional[Dict[str, Any]] = None,
                     category: ErrorCategory = ErrorCategory.PROCESSING,
                     severity: ErrorSeverity = ErrorSeverity.ERROR) -> ComplianceError:
        """
        Record a failure without re-raising it.

        Delivery is at-most-once: the failed operation is never retried.

        Args:
            error: ComplianceError record or exception
            context: Processing context, "component" names the source
            category: Category used when error is a plain exception
            severity: Severity used when error is a plain exception

        Returns:
            The standardized error record
        """
        if not isinstance(error, ComplianceError):
            error = ComplianceError.from_exception(
                error,
                category=category,
                severity=severity,
                source_component=context.get("component") if context else None,
                details={k: v for k, v in (context or {}).items() if k != "component"}
            )

        key = error.category.value
        self.error_counts[key] = self.error_counts.get(key, 0) + 1

        self._log_error(error)
        return error

    def _log_error(self, error: ComplianceError):
        """Log error with appropriate level based on severity"""
        message = f"{error.category.value.upper()} ERROR: {error.message}"

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(message, extra={"error_details": error.to_dict()})
        elif error.severity == ErrorSeverity.ERROR:
            self.logger.error(message, extra={"error_details": error.to_dict()})
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(message, extra={"error_details": error.to_dict()})
        else:
            self.logger.info(message, extra={"error_details": error.to_dict()})
