# loans/exports.py

"""
Excel and PDF renderings of the defaulters report.

Each builder takes the rows produced by stats.get_defaulters() and returns
the file contents as bytes, ready to write to disk or an HTTP response.
"""

from datetime import datetime
from io import BytesIO
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.lib.enums import TA_CENTER

from core.utils import format_money, get_base_currency

logger = logging.getLogger(__name__)

DEFAULTER_HEADERS = [
    '#', 'Loan No.', 'Borrower', 'Phone', 'Guarantor', 'Guarantor Phone',
    'Missed', 'Max Streak', 'Days Overdue', 'Overdue Amount',
]


def _defaulter_row(idx, row):
    return [
        idx,
        row['loan_number'],
        row['borrower_name'],
        row['borrower_phone'] or '',
        row['guarantor_name'] or '',
        row['guarantor_phone'] or '',
        row['missed_count'],
        row['max_streak'],
        row['max_days_overdue'],
    ]


def build_defaulters_workbook(rows):
    """Defaulters report as an .xlsx file"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Defaulters"

    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=12)

    ws.append(DEFAULTER_HEADERS)
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal='center')

    for idx, row in enumerate(rows, start=1):
        ws.append(_defaulter_row(idx, row) + [float(row['overdue_amount'])])

    for cell in ws['J'][1:]:
        cell.number_format = '#,##0.00'

    buffer = BytesIO()
    wb.save(buffer)
    logger.info(f"Built defaulters workbook with {len(rows)} rows")
    return buffer.getvalue()


def build_defaulters_pdf(rows, title="Defaulters Report"):
    """Defaulters report as a landscape A4 PDF"""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=30,
        leftMargin=30,
        topMargin=30,
        bottomMargin=18,
    )

    elements = []
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#4472C4'),
        spaceAfter=12,
        alignment=TA_CENTER,
    )
    subtitle_style = ParagraphStyle(
        'ReportSubtitle',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.grey,
        spaceAfter=20,
        alignment=TA_CENTER,
    )

    elements.append(Paragraph(title, title_style))
    elements.append(Paragraph(
        f"Generated on: {datetime.now().strftime('%Y-%m-%d %H:%M')} | "
        f"Amounts in {get_base_currency()}",
        subtitle_style
    ))
    elements.append(Spacer(1, 0.2*inch))

    data = [DEFAULTER_HEADERS]
    for idx, row in enumerate(rows, start=1):
        cells = [str(value)[:28] for value in _defaulter_row(idx, row)]
        data.append(cells + [format_money(row['overdue_amount'], include_symbol=False)])

    table = Table(data, colWidths=[
        0.4*inch, 1.6*inch, 1.6*inch, 1*inch, 1.4*inch, 1*inch,
        0.6*inch, 0.8*inch, 0.9*inch, 1.1*inch,
    ])
    table.setStyle(TableStyle([
        # Header
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4472C4')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 9),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),

        # Data rows
        ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 1), (-1, -1), 8),
        ('ALIGN', (6, 1), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#F5F5F5')]),

        # Grid
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
    ]))
    elements.append(table)

    elements.append(Spacer(1, 0.3*inch))
    elements.append(Paragraph(f"<b>Total Defaulted Loans:</b> {len(rows)}", styles['Normal']))

    doc.build(elements)
    pdf = buffer.getvalue()
    buffer.close()

    logger.info(f"Built defaulters PDF with {len(rows)} rows")
    return pdf


def format_defaulters_text(rows):
    """Plain-text rendering for the terminal"""
    if not rows:
        return "No defaulters."

    lines = []
    for row in rows:
        lines.append(
            f"{row['loan_number']:<22} {row['borrower_name'][:24]:<24} "
            f"missed={row['missed_count']:<3} streak={row['max_streak']:<3} "
            f"days={row['max_days_overdue']:<5} overdue={format_money(row['overdue_amount'])}"
        )
    lines.append(f"Total defaulted loans: {len(rows)}")
    return "\n".join(lines)
