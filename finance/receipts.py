from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A5
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from admin_site.models import SchoolInfoModel
from .models import PaymentModel
from .utility import format_gnf


def build_payment_receipt(payment, summary):
    """
    Renders a tuition payment receipt as PDF bytes.

    `summary` is the enrollment payment summary (total paid, remaining) at
    the time the receipt is printed.
    """
    enrollment = payment.enrollment
    school = SchoolInfoModel.objects.first()

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A5, topMargin=0.4 * inch, bottomMargin=0.4 * inch,
                            leftMargin=0.5 * inch, rightMargin=0.5 * inch)
    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'ReceiptTitle',
        parent=styles['Heading1'],
        fontSize=15,
        textColor=colors.HexColor('#2c3e50'),
        spaceAfter=4,
        alignment=1
    )
    small_centered = ParagraphStyle('ReceiptSmall', parent=styles['Normal'], fontSize=8, alignment=1)

    if school:
        elements.append(Paragraph(school.name, title_style))
        elements.append(Paragraph(f"{school.address} - {school.mobile} - {school.email}", small_centered))
    elements.append(Spacer(1, 0.15 * inch))
    elements.append(Paragraph(f"Payment Receipt {payment.receipt_number}", styles['Heading2']))
    if payment.status == PaymentModel.Status.REVERSED:
        elements.append(Paragraph("REVERSED", ParagraphStyle(
            'Reversed', parent=styles['Heading2'], textColor=colors.red)))

    rows = [
        ['Date', payment.recorded_at.strftime('%d/%m/%Y %H:%M') if payment.recorded_at else ''],
        ['Student', f"{enrollment.first_name} {enrollment.last_name}"],
        ['Student No.', enrollment.student.student_number if enrollment.student else ''],
        ['Enrollment No.', enrollment.enrollment_number or ''],
        ['Grade', str(enrollment.grade)],
        ['School Year', str(enrollment.school_year)],
        ['Method', payment.get_method_display()],
    ]
    if payment.transaction_ref:
        rows.append(['Transaction Ref.', payment.transaction_ref])
    rows += [
        ['Amount Paid', format_gnf(payment.amount)],
        ['Tuition Fee', format_gnf(enrollment.tuition_fee)],
        ['Total Paid', format_gnf(summary['total_paid'])],
        ['Balance Due', format_gnf(summary['total_remaining'])],
    ]

    table = Table(rows, colWidths=[1.5 * inch, 2.9 * inch])
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('BACKGROUND', (0, 0), (0, -1), colors.HexColor('#ecf0f1')),
        ('BACKGROUND', (0, -4), (-1, -4), colors.HexColor('#d5f5e3')),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
    ]))
    elements.append(table)
    elements.append(Spacer(1, 0.1 * inch))
    elements.append(Paragraph(f"Amount in words: {payment.amount_in_words()}", styles['Italic']))
    elements.append(Spacer(1, 0.3 * inch))

    recorder = payment.recorded_by.get_full_name() or payment.recorded_by.username if payment.recorded_by else ''
    elements.append(Paragraph(f"Received by: {recorder}", styles['Normal']))

    doc.build(elements)
    pdf_content = buffer.getvalue()
    buffer.close()
    return pdf_content
