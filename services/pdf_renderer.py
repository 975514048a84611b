from __future__ import annotations

import io
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

PAGE_MARGIN = 25 * mm


def _styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    body = ParagraphStyle(
        "LegalBody",
        parent=base["Normal"],
        fontName="Helvetica",
        fontSize=11,
        leading=15,
        alignment=TA_JUSTIFY,
        spaceAfter=6,
    )
    return {
        "title": ParagraphStyle(
            "LegalTitle", parent=base["Title"], fontName="Helvetica-Bold", fontSize=16, leading=20, spaceAfter=4
        ),
        "subtitle": ParagraphStyle(
            "LegalSubtitle", parent=body, alignment=TA_CENTER, spaceAfter=10
        ),
        "heading": ParagraphStyle(
            "LegalHeading", parent=body, fontName="Helvetica-Bold", fontSize=12, leading=16, spaceBefore=8,
            spaceAfter=8, alignment=TA_LEFT,
        ),
        "section": ParagraphStyle(
            "LegalSection", parent=body, fontName="Helvetica-Bold", alignment=TA_LEFT, spaceBefore=6, spaceAfter=4
        ),
        "body": body,
        "bold": ParagraphStyle("LegalBold", parent=body, fontName="Helvetica-Bold", alignment=TA_LEFT),
        "bullet": ParagraphStyle("LegalBullet", parent=body, leftIndent=12 * mm, bulletIndent=5 * mm, spaceAfter=3),
        "signature": ParagraphStyle("LegalSignature", parent=body, fontSize=10, leading=13, alignment=TA_LEFT),
        "signature_label": ParagraphStyle(
            "LegalSignatureLabel", parent=body, fontName="Helvetica-Bold", fontSize=10, leading=13, alignment=TA_LEFT
        ),
    }


def _text(value: Any) -> str:
    return escape(str(value or ""))


def _flowables(block: Dict[str, Any], styles: Dict[str, ParagraphStyle]) -> List[Any]:
    kind = block.get("type")
    if kind == "title":
        return [Paragraph(_text(block["text"]), styles["title"])]
    if kind == "subtitle":
        return [Paragraph(_text(block["text"]), styles["subtitle"])]
    if kind == "heading":
        style = styles["heading"]
        if block.get("align") == "center":
            style = ParagraphStyle("LegalHeadingCenter", parent=style, alignment=TA_CENTER)
        return [Paragraph(_text(block["text"]), style)]
    if kind == "paragraph":
        return [Paragraph(_text(block["text"]), styles["bold"] if block.get("bold") else styles["body"])]
    if kind == "bullets":
        return [Paragraph(_text(item), styles["bullet"], bulletText="•") for item in block.get("items") or []]
    if kind == "spacer":
        return [Spacer(1, float(block.get("height") or 0) * mm)]
    if kind == "section":
        content: List[Any] = [Paragraph(_text(block["title"]), styles["section"])]
        for child in block.get("content") or []:
            content.extend(_flowables(child, styles))
        return [KeepTogether(content)]
    if kind == "signatures":
        return [_signature_table(block.get("parties") or [], styles)]
    raise ValueError(f"Unknown layout block: {kind}")


def _signature_table(parties: Sequence[Dict[str, str]], styles: Dict[str, ParagraphStyle]) -> KeepTogether:
    column = [
        [Paragraph(_text(party.get("label")), styles["signature_label"]) for party in parties],
        [Paragraph(_text(party.get("name")), styles["signature"]) for party in parties],
        [Paragraph(_text(party.get("representative")), styles["signature"]) for party in parties],
        ["" for _ in parties],
        [Paragraph("Firma", styles["signature"]) for _ in parties],
    ]
    table = Table(
        column,
        colWidths=[80 * mm] * len(parties),
        rowHeights=[None, None, None, 18 * mm, None],
        hAlign="LEFT",
    )
    commands = [
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("TOPPADDING", (0, 0), (-1, -1), 1),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1),
    ]
    for index in range(len(parties)):
        commands.append(("LINEBELOW", (index, 3), (index, 3), 0.7, colors.black))
    table.setStyle(TableStyle(commands))
    return KeepTogether([Spacer(1, 12 * mm), table, Spacer(1, 8 * mm)])


def render_pdf(blocks: Sequence[Dict[str, Any]], title: Optional[str] = None) -> bytes:
    """Render layout blocks to an A4 PDF and return the file bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=PAGE_MARGIN,
        rightMargin=PAGE_MARGIN,
        topMargin=PAGE_MARGIN,
        bottomMargin=PAGE_MARGIN,
        title=title or "",
        author="Capittal",
    )
    styles = _styles()
    story: List[Any] = []
    for block in blocks:
        story.extend(_flowables(block, styles))
    doc.build(story)
    return buffer.getvalue()
