"""CSV export of the dead-letter queue"""

from datetime import timezone
from typing import Optional, Sequence

from .models import DLQJob

CSV_HEADER = ("ID", "Queue", "Failed At", "Reason")
DEFAULT_EXPORT_FILE = "wida_dlq_export.csv"


def _iso_millis(value) -> str:
    if value is None:
        return ""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def quote_field(text: Optional[str]) -> str:
    """Wrap in double quotes, doubling any quotes inside"""
    return '"' + (text or "").replace('"', '""') + '"'


def export_dlq_csv(dlq: Sequence[DLQJob]) -> str:
    """Render DLQ entries as CSV rows; an empty DLQ exports nothing"""
    if not dlq:
        return ""
    lines = [",".join(CSV_HEADER)]
    for job in dlq:
        lines.append(",".join((job.id, job.queue, _iso_millis(job.failed_at), quote_field(job.reason))))
    return "\n".join(lines)
