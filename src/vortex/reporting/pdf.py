"""Render an analysis into a PDF report with reportlab."""

import io
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer


def report_title(repo: str) -> str:
    return f"Analysis for {repo}"


def render_report(repo: str, analysis: str) -> bytes:
    """Lay out the analysis text under a title and return the PDF bytes.

    Blank lines in the analysis separate paragraphs; single newlines are
    kept as line breaks. Text is escaped, so model output containing
    markup characters renders literally.

    Args:
        repo: Repository the analysis is about.
        analysis: Model output.

    Returns:
        The encoded PDF document.
    """
    styles = getSampleStyleSheet()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        title=report_title(repo),
        leftMargin=inch,
        rightMargin=inch,
        topMargin=inch,
        bottomMargin=inch,
    )

    story = [
        Paragraph(f"<u>{escape(report_title(repo))}</u>", styles["Title"]),
        Spacer(1, 0.25 * inch),
    ]
    for block in analysis.replace("\r\n", "\n").split("\n\n"):
        if not block.strip():
            continue
        text = escape(block.strip()).replace("\n", "<br/>")
        story.append(Paragraph(text, styles["BodyText"]))
        story.append(Spacer(1, 0.1 * inch))

    doc.build(story)
    return buffer.getvalue()
