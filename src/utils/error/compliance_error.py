import os
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorSeverity(Enum):
    INFO = "info"              # Non-critical information
    WARNING = "warning"        # Process can continue but with caution
    ERROR = "error"            # Operation failed, engine is stable
    CRITICAL = "critical"      # Engine state may be compromised


class ErrorCategory(Enum):
    VALIDATION = "validation"    # Structural problems in rule definitions
    NOT_FOUND = "not_found"      # Unknown rule or report identifier
    UNSUPPORTED = "unsupported"  # Operation the engine does not provide
    AUDIT = "audit"              # Audit persistence failures
    REPORTING = "reporting"      # Report construction failures
    PROCESSING = "processing"    # Anything else raised while checking content


@dataclass
class ComplianceError:
    """Standardized error record for the compliance engine"""
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    code: Optional[str] = None  # e.g., "RULE-404"
    details: Dict[str, Any] = field(default_factory=dict)
    source_component: Optional[str] = None
    stack_trace: Optional[str] = None
    related_regulations: List[str] = field(default_factory=list)
    correlation_id: Optional[str] = None

    @classmethod
    def from_exception(cls, e: Exception, category: ErrorCategory,
                       severity: ErrorSeverity = ErrorSeverity.ERROR,
                       source_component: Optional[str] = None, **kwargs):
        """Create error record from exception with stack trace"""
        if isinstance(e, ComplianceEngineError):
            category = e.category
            kwargs.setdefault("code", e.code)
        return cls(
            message=str(e),
            category=category,
            severity=severity,
            source_component=source_component,
            stack_trace="".join(traceback.format_exception(type(e), e, e.__traceback__)),
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging"""
        result = {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "source": self.source_component
        }

        if self.code:
            result["code"] = self.code

        if self.details:
            result["details"] = self.details

        if self.related_regulations:
            result["related_regulations"] = self.related_regulations

        if self.correlation_id:
            result["correlation_id"] = self.correlation_id

        # Stack traces stay out of production logs
        if self.stack_trace and self._is_development_mode():
            result["stack_trace"] = self.stack_trace

        return result

    def _is_development_mode(self) -> bool:
        return os.environ.get("ENVIRONMENT", "production").lower() in ("development", "dev", "test")


class ComplianceEngineError(Exception):
    """Base class for errors the engine raises to its callers."""
    category = ErrorCategory.PROCESSING
    code = "ENGINE-500"


class InvalidRuleError(ComplianceEngineError, ValueError):
    """A rule failed structural validation."""
    category = ErrorCategory.VALIDATION
    code = "RULE-400"

    def __init__(self, errors: Sequence[str]):
        self.errors = tuple(errors)
        super().__init__(f"Invalid rule: {', '.join(self.errors)}")


class RuleNotFoundError(ComplianceEngineError, KeyError):
    category = ErrorCategory.NOT_FOUND
    code = "RULE-404"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule with ID {rule_id} not found")

    def __str__(self):
        return self.args[0]


class UnsupportedExportFormatError(ComplianceEngineError, ValueError):
    category = ErrorCategory.UNSUPPORTED
    code = "EXPORT-400"

    def __init__(self, export_format: str):
        self.export_format = export_format
        super().__init__(f"Unsupported export format: {export_format}")


class ExportNotImplementedError(ComplianceEngineError, NotImplementedError):
    """Raised for formats that are recognised but not produced."""
    category = ErrorCategory.UNSUPPORTED
    code = "EXPORT-501"

    def __init__(self, export_format: str):
        self.export_format = export_format
        super().__init__(f"{export_format.upper()} export not implemented yet")


class ReportGenerationError(ComplianceEngineError):
    category = ErrorCategory.REPORTING
    code = "REPORT-500"

    def __init__(self, report_id: str, message: str):
        self.report_id = report_id
        super().__init__(f"Failed to generate report {report_id}: {message}")
