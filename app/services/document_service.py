"""Document rendering for reports and certificates (Word .docx)."""

import asyncio
import io
import logging
from typing import Any, Dict, Iterable, List, Optional

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt

from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _as_lines(content: Any) -> List[str]:
    if content is None:
        return []
    if isinstance(content, str):
        return [content]
    if isinstance(content, dict):
        return [f"{key}: {value}" for key, value in content.items()]
    if isinstance(content, Iterable):
        return [str(item) for item in content]
    return [str(content)]


class DocumentService:
    """Render sections into .docx bytes."""

    content_type = DOCX_CONTENT_TYPE
    extension = "docx"

    def _to_bytes(self, doc) -> bytes:
        buffer = io.BytesIO()
        doc.save(buffer)
        return buffer.getvalue()

    def _render_report(
        self, title: str, sections: List[Dict[str, Any]], metadata: Optional[Dict[str, Any]]
    ) -> bytes:
        doc = Document()
        doc.add_heading(title, level=0)

        for key, value in (metadata or {}).items():
            paragraph = doc.add_paragraph()
            paragraph.add_run(f"{key}: ").bold = True
            paragraph.add_run(str(value))

        for section in sections:
            doc.add_heading(section.get("title", ""), level=1)
            content = section.get("content")
            if isinstance(content, str):
                doc.add_paragraph(content)
            else:
                for line in _as_lines(content):
                    doc.add_paragraph(line, style="List Bullet")

        footer = doc.add_paragraph(f"Generated on {utcnow():%d %B %Y}")
        footer.runs[0].font.size = Pt(8)
        return self._to_bytes(doc)

    def _render_certificate(self, details: Dict[str, Any]) -> bytes:
        doc = Document()
        heading = doc.add_heading("Certificate of Internship Completion", level=0)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

        lines = [
            "This is to certify that",
            details.get("student_name", ""),
            "has successfully completed the internship",
            f"{details.get('internship_title', '')} at {details.get('company_name', '')}",
            f"Total hours: {details.get('total_hours', 0)}",
            f"Academic credits earned: {details.get('credits_earned', 0)}",
        ]
        for line in lines:
            paragraph = doc.add_paragraph(line)
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER

        if details.get("completion_code"):
            doc.add_paragraph(f"Certificate ID: {details['completion_code']}")
        doc.add_paragraph(f"Issued on {details.get('issued_on') or f'{utcnow():%d %B %Y}'}")
        return self._to_bytes(doc)

    async def generate_report(
        self,
        title: str,
        sections: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        """Render a titled document with one heading per section."""
        return await asyncio.to_thread(self._render_report, title, sections, metadata)

    async def generate_certificate(self, details: Dict[str, Any]) -> bytes:
        """Render a completion certificate."""
        return await asyncio.to_thread(self._render_certificate, details)
