from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape

from docx import Document
from docx.shared import Inches, Pt
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import ListFlowable, ListItem, Paragraph, SimpleDocTemplate, Spacer

from riresume.config import get_settings
from riresume.types import ParsedResume

logger = logging.getLogger(__name__)


def export_filename(resume: ParsedResume, suffix: str) -> str:
    base = re.sub(r"[^A-Za-z0-9]+", "_", resume.name).strip("_") or "resume"
    return f"{base}_Resume.{suffix}"


def _role_heading(item: dict[str, Any]) -> str:
    title = str(item.get("title") or item.get("position") or "").strip()
    company = str(item.get("company") or "").strip()
    heading = " at ".join(part for part in (title, company) if part)
    dates = " - ".join(
        str(item[key]).strip() for key in ("start_date", "end_date") if item.get(key)
    ) or str(item.get("dates", "")).strip()
    return f"{heading} ({dates})" if dates and heading else heading or dates


def _bullets(item: dict[str, Any]) -> list[str]:
    bullets = item.get("bullets") or item.get("achievements") or []
    if isinstance(bullets, str):
        bullets = [bullets]
    description = item.get("description")
    if not bullets and isinstance(description, str) and description.strip():
        bullets = [description]
    return [str(bullet).strip() for bullet in bullets if str(bullet).strip()]


def _education_line(item: dict[str, Any]) -> str:
    parts = [item.get("degree"), item.get("school") or item.get("institution"), item.get("year")]
    return ", ".join(str(part).strip() for part in parts if part)


def _output_path(resume: ParsedResume, suffix: str, output_dir: Path | None) -> Path:
    directory = output_dir or get_settings().export_dir
    directory.mkdir(parents=True, exist_ok=True)
    return directory / export_filename(resume, suffix)


def export_pdf(resume: ParsedResume, output_dir: Path | None = None) -> Path:
    path = _output_path(resume, "pdf", output_dir)
    styles = getSampleStyleSheet()
    heading = ParagraphStyle("SectionHeading", parent=styles["Heading2"], spaceBefore=10, spaceAfter=4)
    body = styles["BodyText"]

    story: list[Any] = [Paragraph(escape(resume.name or "Resume"), styles["Title"])]
    if resume.email:
        story.append(Paragraph(escape(resume.email), body))
    if resume.summary:
        story.append(Paragraph("Summary", heading))
        story.append(Paragraph(escape(resume.summary), body))
    if resume.skills:
        story.append(Paragraph("Skills", heading))
        story.append(Paragraph(escape(", ".join(resume.skills)), body))
    if resume.experience:
        story.append(Paragraph("Experience", heading))
        for item in resume.experience:
            story.append(Paragraph(f"<b>{escape(_role_heading(item))}</b>", body))
            bullets = _bullets(item)
            if bullets:
                story.append(
                    ListFlowable(
                        [ListItem(Paragraph(escape(bullet), body)) for bullet in bullets],
                        bulletType="bullet",
                    )
                )
            story.append(Spacer(1, 4))
    if resume.education:
        story.append(Paragraph("Education", heading))
        for item in resume.education:
            story.append(Paragraph(escape(_education_line(item)), body))

    doc = SimpleDocTemplate(
        str(path),
        pagesize=letter,
        leftMargin=0.7 * inch,
        rightMargin=0.7 * inch,
        topMargin=0.65 * inch,
        bottomMargin=0.65 * inch,
        title=f"{resume.name} Resume".strip(),
    )
    doc.build(story)
    logger.info("Exported PDF resume to %s", path)
    return path


def export_docx(resume: ParsedResume, output_dir: Path | None = None) -> Path:
    path = _output_path(resume, "docx", output_dir)
    doc = Document()
    for section in doc.sections:
        section.top_margin = Inches(0.65)
        section.bottom_margin = Inches(0.65)
        section.left_margin = Inches(0.70)
        section.right_margin = Inches(0.70)

    doc.add_heading(resume.name or "Resume", level=0)
    if resume.email:
        doc.add_paragraph(resume.email)
    if resume.summary:
        doc.add_heading("Summary", level=1)
        doc.add_paragraph(resume.summary)
    if resume.skills:
        doc.add_heading("Skills", level=1)
        doc.add_paragraph(", ".join(resume.skills))
    if resume.experience:
        doc.add_heading("Experience", level=1)
        for item in resume.experience:
            run = doc.add_paragraph().add_run(_role_heading(item))
            run.bold = True
            run.font.size = Pt(11)
            for bullet in _bullets(item):
                doc.add_paragraph(bullet, style="List Bullet")
    if resume.education:
        doc.add_heading("Education", level=1)
        for item in resume.education:
            doc.add_paragraph(_education_line(item))

    doc.save(str(path))
    logger.info("Exported DOCX resume to %s", path)
    return path
