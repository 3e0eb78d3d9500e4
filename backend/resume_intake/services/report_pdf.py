from io import BytesIO
from datetime import datetime, timezone
from typing import Any, Dict, List

from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

INK = colors.HexColor("#1B1F2A")
MUTED = colors.HexColor("#5B6272")
ACCENT = colors.HexColor("#2563EB")
RULE = colors.HexColor("#D8DCE5")
HEADER_BG = colors.HexColor("#EEF2FA")

IMPACT_COLORS = {
    "high": "#DC2626",
    "medium": "#D97706",
    "low": "#059669",
}

_styles = getSampleStyleSheet()
TITLE = ParagraphStyle("title", parent=_styles["Title"], fontName="Helvetica-Bold", fontSize=20, textColor=INK, spaceAfter=6)
H2 = ParagraphStyle("h2", parent=_styles["Heading2"], fontName="Helvetica-Bold", fontSize=12, textColor=INK, spaceBefore=12, spaceAfter=6)
BODY = ParagraphStyle("body", parent=_styles["BodyText"], fontName="Helvetica", fontSize=10, textColor=MUTED, leading=14)
CELL = ParagraphStyle("cell", parent=BODY, fontSize=9, leading=12, textColor=INK)


def _esc(s: Any) -> str:
    if s is None:
        return ""
    return str(s).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _num(x: Any) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if v != v else v


def _join(items: List[str], limit: int = 20) -> str:
    return _esc(", ".join(items[:limit])) if items else "-"


def _table(rows: List[list], widths: List[int]) -> Table:
    t = Table(rows, colWidths=widths)
    t.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("TEXTCOLOR", (0, 0), (-1, -1), INK),
                ("GRID", (0, 0), (-1, -1), 0.5, RULE),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    return t


def _header(result: Dict[str, Any]) -> list:
    job = result.get("target_job") or {}
    title = _esc(job.get("title") or "Untitled role")
    company = job.get("company")
    role = f"{title} at {_esc(company)}" if company else title
    return [
        Paragraph("Resume Analysis Report", TITLE),
        Paragraph(f"Target role: {role}", BODY),
        Paragraph(f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}", BODY),
        Spacer(1, 10),
    ]


def _scores(result: Dict[str, Any]) -> list:
    scores = result.get("scores") or {}
    bd = scores.get("breakdown") or {}
    rows = [
        ["Overall", "Keywords", "Formatting", "Content"],
        [
            f"{_num(scores.get('total')):.0f}/100",
            f"{_num(bd.get('keywords')):.0f}/45",
            f"{_num(bd.get('formatting')):.0f}/25",
            f"{_num(bd.get('content')):.0f}/30",
        ],
    ]
    t = _table(rows, [125, 125, 125, 125])
    t.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER"), ("FONTSIZE", (0, 1), (-1, 1), 13)]))
    return [t, Spacer(1, 6)]


def _keywords(result: Dict[str, Any]) -> list:
    ka = result.get("keyword_analysis") or {}
    out = [
        Paragraph("Keyword Match", H2),
        Paragraph(f"Coverage: {_num(ka.get('coverage')):.1f}% (keywords from {_esc(ka.get('source') or '-')})", BODY),
        Paragraph(f"Found: {_join(ka.get('present') or [])}", BODY),
        Paragraph(f"Missing: {_join(ka.get('missing') or [])}", BODY),
    ]

    matches = ka.get("semantic_matches") or []
    if matches:
        out.append(Paragraph(f"Related experience (semantic coverage {_num(ka.get('semantic_coverage')):.1f}%)", H2))
        rows = [["Keyword", "Similarity", "Closest resume line"]]
        for m in matches[:8]:
            rows.append([
                Paragraph(_esc(m.get("keyword")), CELL),
                f"{_num(m.get('score')) * 100:.0f}%",
                Paragraph(_esc((m.get("best_line") or "-")[:140]), CELL),
            ])
        out.append(_table(rows, [110, 60, 330]))
    return out


def _formatting(result: Dict[str, Any]) -> list:
    ff = result.get("formatting_flags") or {}
    contact = ff.get("contact_info") or {}
    sections = ff.get("section_presence") or {}

    def yes_no(v: Any) -> str:
        return "yes" if v else "no"

    rows = [
        ["Check", "Result"],
        ["Email", yes_no(contact.get("email_detected"))],
        ["Phone", yes_no(contact.get("phone_detected"))],
        ["LinkedIn", yes_no(contact.get("linkedin_detected"))],
        ["Sections found", Paragraph(_join(sections.get("detected_sections") or []), CELL)],
        ["Missing core sections", Paragraph(_join(sections.get("missing_core_sections") or []), CELL)],
        ["Possible multi-column layout", yes_no(ff.get("possible_multi_column_layout"))],
    ]
    return [Paragraph("Formatting & Structure", H2), _table(rows, [170, 330])]


def _suggestions(result: Dict[str, Any]) -> list:
    items = (result.get("suggestions") or {}).get("items") or []
    out = [Paragraph("Recommendations", H2)]
    if not items:
        out.append(Paragraph("No recommendations. Nice work.", BODY))
        return out

    for item in items[:12]:
        impact = str(item.get("impact") or "low").lower()
        color = IMPACT_COLORS.get(impact, IMPACT_COLORS["low"])
        out.append(Paragraph(
            f"<font color='{color}'><b>{_esc(impact.upper())}</b></font> "
            f"<b>{_esc(item.get('title'))}</b>",
            BODY,
        ))
        out.append(Paragraph(_esc(item.get("detail")), BODY))
        out.append(Spacer(1, 4))
    return out


def build_pdf(result: Dict[str, Any]) -> bytes:
    """Render an analysis result (as returned by /api/analyze) to PDF bytes."""
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=42,
        rightMargin=42,
        topMargin=42,
        bottomMargin=42,
        title="Resume Analysis Report",
        author="Resume Intake",
    )

    story = [
        *_header(result),
        *_scores(result),
        *_keywords(result),
        *_formatting(result),
        *_suggestions(result),
    ]

    def on_page(canvas, _doc):
        canvas.saveState()
        canvas.setFillColor(ACCENT)
        canvas.rect(0, A4[1] - 8, A4[0], 8, fill=1, stroke=0)
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(MUTED)
        canvas.drawRightString(A4[0] - 42, 24, f"Page {_doc.page}")
        canvas.restoreState()

    doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
    return buf.getvalue()
