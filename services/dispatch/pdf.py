"""Render free-text symptom notes to a single A4 PDF."""

from __future__ import annotations

import io
import re
from datetime import datetime

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

__all__ = ["render_symptom_report", "sanitize_filename", "wrap_text"]

_MARGIN = 48
_LINE_HEIGHT = 16
_WRAP_WIDTH = 95


def wrap_text(text: str, max_length: int = _WRAP_WIDTH) -> list[str]:
    """Greedy word wrap; a single word longer than ``max_length`` stays on its own line."""

    lines: list[str] = []
    line = ""
    for word in text.split():
        candidate = f"{line} {word}" if line else word
        if len(candidate) > max_length:
            if line:
                lines.append(line)
            line = word
        else:
            line = candidate
    if line:
        lines.append(line)
    return lines


def sanitize_filename(name: str) -> str:
    trimmed = name.strip()[:60] or "document"
    return re.sub(r"[^a-zA-Z0-9\-_.]", "_", trimmed)


def render_symptom_report(text: str, *, title: str = "Symptoms Report", generated_at: datetime | None = None) -> bytes:
    """Return PDF bytes; lines past the bottom margin are dropped, as on a printed form."""

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle(title)
    _, height = A4
    y = height - _MARGIN

    pdf.setFont("Helvetica-Bold", 18)
    pdf.setFillColorRGB(0.1, 0.2, 0.35)
    pdf.drawString(_MARGIN, y, title)

    y -= 26
    pdf.setFont("Helvetica", 10)
    pdf.setFillColorRGB(0.35, 0.35, 0.35)
    stamp = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    pdf.drawString(_MARGIN, y, f"Generated: {stamp}")

    y -= 24
    pdf.setFont("Helvetica", 12)
    pdf.setFillColorRGB(0.1, 0.1, 0.1)
    for line in wrap_text(" ".join(text.split())):
        if y < _MARGIN + 20:
            break
        pdf.drawString(_MARGIN, y, line)
        y -= _LINE_HEIGHT

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
