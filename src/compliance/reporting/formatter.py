import csv
import dataclasses
import datetime
import io
import json
from enum import Enum
from xml.sax.saxutils import escape as xml_escape

from src.compliance.models.report_models import ComplianceReport
from src.utils.error.compliance_error import ExportNotImplementedError, UnsupportedExportFormatError

CSV_HEADERS = [
    "Violation ID",
    "Rule ID",
    "Regulation",
    "Severity",
    "Confidence",
    "Description",
    "Location",
    "Suggested Fix",
]


def to_jsonable(value):
    """Plain JSON-compatible structure for dataclasses, enums and dates."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def _cdata(text: str) -> str:
    # "]]>" cannot appear inside a CDATA section
    return "<![CDATA[" + (text or "").replace("]]>", "]]]]><![CDATA[>") + "]]>"


class ReportFormatter:
    """
    Serializes compliance reports for export.
    """
    def __init__(self):
        self.format_handlers = {
            "json": self.format_as_json,
            "csv": self.format_as_csv,
            "xml": self.format_as_xml,
            "pdf": self.format_as_pdf,
        }

    def format(self, report: ComplianceReport, format_type: str = "json") -> str:
        """
        Format a report in the specified format.

        Args:
            report: Generated compliance report
            format_type: Format type ("json", "csv", "xml", "pdf")

        Returns:
            Formatted report

        Raises:
            UnsupportedExportFormatError: If the format is unknown
            ExportNotImplementedError: If the format is known but not produced
        """
        handler = self.format_handlers.get(str(format_type).lower())
        if handler is None:
            raise UnsupportedExportFormatError(format_type)
        return handler(report)

    def format_as_json(self, report: ComplianceReport) -> str:
        return json.dumps(to_jsonable(report), indent=2)

    def format_as_csv(self, report: ComplianceReport) -> str:
        """One row per violation, every cell quoted"""
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)

        for violation_report in report.violations:
            violation = violation_report.violation
            writer.writerow([
                violation.violation_id,
                violation.rule.id,
                violation.rule.regulation,
                violation.severity.value,
                str(violation.confidence),
                violation.description,
                f"{violation.location.start}-{violation.location.end}",
                violation.suggested_fix or "",
            ])

        return buffer.getvalue().rstrip("\n")

    def format_as_xml(self, report: ComplianceReport) -> str:
        """Minimal XML document with one element per violation"""
        xml = '<?xml version="1.0" encoding="UTF-8"?>\n'
        xml += '<ComplianceReport>\n'
        xml += f'  <id>{xml_escape(report.id)}</id>\n'
        xml += f'  <sessionId>{xml_escape(report.session_id)}</sessionId>\n'
        xml += f'  <generatedAt>{report.generated_at.isoformat()}</generatedAt>\n'
        xml += '  <violations>\n'

        for violation_report in report.violations:
            violation = violation_report.violation
            xml += '    <violation>\n'
            xml += f'      <ruleId>{xml_escape(violation.rule_id)}</ruleId>\n'
            xml += f'      <severity>{violation.severity.value}</severity>\n'
            xml += f'      <confidence>{violation.confidence}</confidence>\n'
            xml += f'      <description>{_cdata(violation.description)}</description>\n'
            xml += '    </violation>\n'

        xml += '  </violations>\n'
        xml += '</ComplianceReport>'
        return xml

    def format_as_pdf(self, report: ComplianceReport) -> str:
        raise ExportNotImplementedError("pdf")
