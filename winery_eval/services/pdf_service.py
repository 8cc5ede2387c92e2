import logging
import re
from io import BytesIO
from typing import List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from winery_eval.models.evaluation import EvaluationData
from winery_eval.models.rubric import Rubric

HEADER_COLOR = colors.HexColor("#7b1e3a")
GRID_COLOR = colors.HexColor("#d9d9d9")
SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def export_filename(kind: str, name: str, extension: str = "pdf") -> str:
    """rubric + "Wine Sales Evaluation" -> rubric-wine-sales-evaluation.pdf"""
    slug = SLUG_PATTERN.sub("-", (name or "").lower()).strip("-") or "export"
    return f"{kind}-{slug}.{extension}"


def _styles():
    styles = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("Title", parent=styles["Heading1"], fontSize=20, textColor=HEADER_COLOR, spaceAfter=12),
        "heading": ParagraphStyle("Heading", parent=styles["Heading2"], fontSize=14, textColor=HEADER_COLOR, spaceBefore=12, spaceAfter=6),
        "normal": ParagraphStyle("Body", parent=styles["Normal"], fontSize=10, leading=14, spaceAfter=4),
        "cell": ParagraphStyle("Cell", parent=styles["Normal"], fontSize=9, leading=11),
    }


def _table(rows: List[list], col_widths: List[float]) -> Table:
    table = Table(rows, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.5, GRID_COLOR),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
    ]))
    return table


def _build(story: list, title: str) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        title=title,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
    )
    doc.build(story)
    pdf = buffer.getvalue()
    buffer.close()
    logging.info(f"Rendered PDF '{title}' ({len(pdf)} bytes)")
    return pdf


def _bullets(items: List[str], style) -> list:
    return [Paragraph(f"&bull; {escape(item)}", style) for item in items]


def render_evaluation_pdf(evaluation: EvaluationData) -> bytes:
    """Printable evaluation report"""
    s = _styles()
    story = [
        Paragraph("Wine Sales Evaluation Report", s["title"]),
        Paragraph(f"<b>Staff Member:</b> {escape(evaluation.staff_name)}", s["normal"]),
        Paragraph(f"<b>Date:</b> {escape(evaluation.date)}", s["normal"]),
        Paragraph(
            f"<b>Overall Score:</b> {evaluation.overall_score:g}% ({escape(evaluation.performance_level)})",
            s["normal"],
        ),
        Spacer(1, 12),
        Paragraph("Criteria Scores", s["heading"]),
    ]

    rows = [["Criterion", "Weight", "Score", "Weighted", "Notes"]]
    for item in evaluation.criteria_scores:
        rows.append([
            Paragraph(escape(item.criterion), s["cell"]),
            f"{item.weight:g}",
            f"{item.score:g}/5",
            f"{item.weighted_score:g}",
            Paragraph(escape(item.notes), s["cell"]),
        ])
    story.append(_table(rows, [1.6 * inch, 0.6 * inch, 0.5 * inch, 0.7 * inch, 3.6 * inch]))

    notes = evaluation.observational_notes
    story.append(Paragraph("Observational Notes", s["heading"]))
    story.append(Paragraph(
        f"<b>Product Knowledge ({notes.product_knowledge.score:g}/5):</b> {escape(notes.product_knowledge.notes)}",
        s["normal"],
    ))
    story.append(Paragraph(
        f"<b>Handling Objections ({notes.handling_objections.score:g}/5):</b> {escape(notes.handling_objections.notes)}",
        s["normal"],
    ))

    for heading, items in (
        ("Strengths", evaluation.strengths),
        ("Areas for Improvement", evaluation.areas_for_improvement),
        ("Key Recommendations", evaluation.key_recommendations),
    ):
        story.append(Paragraph(heading, s["heading"]))
        story.extend(_bullets(items, s["normal"]))

    return _build(story, f"Evaluation - {evaluation.staff_name}")


def render_rubric_pdf(rubric: Rubric) -> bytes:
    s = _styles()
    story = [
        Paragraph(escape(rubric.name), s["title"]),
        Paragraph(escape(rubric.description), s["normal"]),
        Spacer(1, 12),
    ]

    for criterion in rubric.criteria:
        story.append(Paragraph(f"{escape(criterion.name)} ({criterion.weight:g}%)", s["heading"]))
        if criterion.description:
            story.append(Paragraph(escape(criterion.description), s["normal"]))
        rows = [["Score", "Description"]]
        for level in sorted(criterion.scoring_levels, key=lambda lvl: lvl.score):
            rows.append([str(level.score), Paragraph(escape(level.description), s["cell"])])
        story.append(_table(rows, [0.6 * inch, 6.4 * inch]))

    story.append(Paragraph("Performance Levels", s["heading"]))
    rows = [["Level", "Range", "Description"]]
    for level in sorted(rubric.performance_levels, key=lambda lvl: lvl.min_score, reverse=True):
        rows.append([
            Paragraph(escape(level.name), s["cell"]),
            f"{level.min_score:g}-{level.max_score:g}%",
            Paragraph(escape(level.description), s["cell"]),
        ])
    story.append(_table(rows, [1.5 * inch, 1.0 * inch, 4.5 * inch]))

    return _build(story, rubric.name)


def _markdown_line(line: str) -> str:
    text = escape(line)
    text = re.sub(r"^#{1,6}\s*", "", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"(?<![\w*])[_*](.+?)[_*](?![\w*])", r"<i>\1</i>", text)
    return text


def render_conversation_pdf(markdown: str, title: str = "Wine Tasting Conversation") -> bytes:
    """Render cleaned conversation markdown, one paragraph per line"""
    s = _styles()
    story = [Paragraph(escape(title), s["title"])]
    for line in markdown.splitlines():
        if not line.strip():
            story.append(Spacer(1, 6))
            continue
        story.append(Paragraph(_markdown_line(line), s["normal"]))
    return _build(story, title)
