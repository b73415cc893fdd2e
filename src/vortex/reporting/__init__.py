"""Report rendering and delivery."""

from .mail import REPORT_FILENAME, SesMailer, build_report_message
from .pdf import render_report, report_title

__all__ = [
    "REPORT_FILENAME",
    "SesMailer",
    "build_report_message",
    "render_report",
    "report_title",
]
