# formflow/esign/documents.py

"""
Artifacts sent for signature: the fallback PDF built from submission data
and the hook for an external template renderer.
"""

import base64
import json
import os
import tempfile
from typing import Any, Dict, Optional, Protocol

from formflow.core.config import settings
from formflow.utils.exporter.pdf_exporter import PDFExporter


class TemplateRenderer(Protocol):
    """Renders a configured PDF template with submission data."""

    def render(self, template_id: str, data: Dict[str, Any]) -> bytes:
        ...


def _display_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return "" if value is None else str(value)


def build_submission_pdf(title: str, data: Dict[str, Any], subtitle: Optional[str] = None) -> bytes:
    """Field/value table of a submission as a PDF document"""
    rows = [{"Field": key, "Value": _display_value(value)} for key, value in data.items()]
    if not rows:
        rows = [{"Field": "-", "Value": "No fields submitted"}]
    return PDFExporter(rows, title=title, subtitle=subtitle).export().getvalue()


def write_temp_file(content: bytes, prefix: str = "formflow-", suffix: str = ".pdf") -> str:
    """Write bytes to a new temporary file and return its path; the caller removes it"""
    temp_dir = settings.temp_dir
    if temp_dir:
        os.makedirs(temp_dir, exist_ok=True)
    with tempfile.NamedTemporaryFile(prefix=prefix, suffix=suffix, dir=temp_dir, delete=False) as handle:
        handle.write(content)
        return handle.name


def encode_file_to_base64(path: str) -> str:
    with open(path, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")
