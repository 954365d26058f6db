"""
Trimester report cards: a student's subject averages and evaluations, the
trimester result and the class statistics, as data and as a printable PDF.
"""
from collections import defaultdict
from io import BytesIO

from django.core.exceptions import ValidationError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from admin_site.models import SchoolInfoModel
from student.models import EnrollmentModel
from .models import EvaluationModel, SubjectTrimesterAverageModel, StudentTrimesterModel, ClassTrimesterStatsModel


def _grade_of(student, trimester):
    result = StudentTrimesterModel.objects.filter(student=student, trimester=trimester).select_related('grade').first()
    if result:
        return result.grade, result
    enrollment = EnrollmentModel.objects.filter(
        student=student, school_year=trimester.school_year, status=EnrollmentModel.Status.COMPLETED
    ).select_related('grade').first()
    if enrollment is None:
        raise ValidationError(f"{student} is not enrolled in {trimester.school_year}.", code='not_enrolled')
    return enrollment.grade, None


def build_report_card(student, trimester):
    grade, result = _grade_of(student, trimester)

    evaluations = defaultdict(lambda: defaultdict(list))
    for evaluation in EvaluationModel.objects.filter(student=student, trimester=trimester).order_by('evaluation_date'):
        evaluations[evaluation.grade_subject_id][evaluation.type].append({
            'id': evaluation.id,
            'score': evaluation.score,
            'max_score': evaluation.max_score,
            'date': evaluation.evaluation_date,
        })

    averages = SubjectTrimesterAverageModel.objects.filter(
        student=student, trimester=trimester, grade_subject__grade=grade
    ).select_related('grade_subject__subject').order_by('grade_subject__subject__code', 'grade_subject__subject__name')

    subjects = []
    for average in averages:
        by_type = evaluations[average.grade_subject_id]
        subjects.append({
            'subject_id': average.grade_subject.subject_id,
            'code': average.grade_subject.subject.code,
            'name': average.grade_subject.subject.name,
            'coefficient': average.coefficient,
            'interrogation_average': average.interrogation_average,
            'devoir_average': average.devoir_average,
            'composition_average': average.composition_average,
            'average': average.average,
            'weighted_average': average.average * average.coefficient,
            'teacher_remark': average.teacher_remark,
            'evaluations': {eval_type: by_type.get(eval_type, []) for eval_type in EvaluationModel.Type.values},
        })

    return {
        'student': student,
        'grade': grade,
        'trimester': trimester,
        'subjects': subjects,
        'total_coefficient': sum(s['coefficient'] for s in subjects),
        'result': result,
        'class_stats': ClassTrimesterStatsModel.objects.filter(grade=grade, trimester=trimester).first(),
    }


def _mark(value):
    return f"{value:.2f}" if value is not None else '-'


def render_report_card(card):
    """Renders a report card built by build_report_card as PDF bytes."""
    student, trimester, result, stats = card['student'], card['trimester'], card['result'], card['class_stats']
    school = SchoolInfoModel.objects.first()

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.5 * inch, bottomMargin=0.5 * inch,
                            leftMargin=0.6 * inch, rightMargin=0.6 * inch)
    elements = []
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle('CardTitle', parent=styles['Heading1'], fontSize=16,
                                 textColor=colors.HexColor('#2c3e50'), alignment=1, spaceAfter=4)
    centered = ParagraphStyle('CardCentered', parent=styles['Normal'], fontSize=9, alignment=1)

    if school:
        elements.append(Paragraph(school.name, title_style))
        elements.append(Paragraph(f"{school.address} - {school.mobile}", centered))
    elements.append(Spacer(1, 0.15 * inch))
    elements.append(Paragraph(f"Report Card - {trimester.name} - {trimester.school_year}", styles['Heading2']))

    identity = Table([
        ['Student', f"{student.first_name} {student.last_name}", 'Student No.', student.student_number],
        ['Grade', card['grade'].name, 'Date of birth',
         student.date_of_birth.strftime('%d/%m/%Y') if student.date_of_birth else ''],
    ], colWidths=[1 * inch, 2.4 * inch, 1.1 * inch, 2.2 * inch])
    identity.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
    ]))
    elements.append(identity)
    elements.append(Spacer(1, 0.2 * inch))

    rows = [['Subject', 'Coef.', 'Interro.', 'Devoir', 'Compo.', 'Average', 'Weighted', 'Remark']]
    for subject in card['subjects']:
        rows.append([
            subject['name'], subject['coefficient'], _mark(subject['interrogation_average']),
            _mark(subject['devoir_average']), _mark(subject['composition_average']), _mark(subject['average']),
            _mark(subject['weighted_average']), subject['teacher_remark'] or '',
        ])
    rows.append(['Total', card['total_coefficient'], '', '', '', '', '', ''])

    marks = Table(rows, colWidths=[1.6 * inch, 0.5 * inch, 0.65 * inch, 0.65 * inch, 0.65 * inch, 0.7 * inch,
                                   0.75 * inch, 1.3 * inch], repeatRows=1)
    marks.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#ecf0f1')),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('ALIGN', (1, 0), (-2, -1), 'CENTER'),
    ]))
    elements.append(marks)
    elements.append(Spacer(1, 0.2 * inch))

    summary = []
    if result:
        summary += [
            ['General average', _mark(result.general_average)],
            ['Rank', f"{result.rank} / {result.total_students}" if result.rank else '-'],
            ['Conduct', _mark(result.conduct)],
            ['Absences / Lates', f"{result.absences} / {result.lates}"],
            ['Decision', result.get_decision_display()],
        ]
    if stats:
        summary += [
            ['Class average', _mark(stats.class_average)],
            ['Highest / Lowest', f"{_mark(stats.highest_average)} / {_mark(stats.lowest_average)}"],
            ['Pass rate', f"{_mark(stats.pass_rate)} %"],
        ]
    if summary:
        table = Table(summary, colWidths=[1.8 * inch, 2 * inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ]))
        elements.append(table)
    else:
        elements.append(Paragraph("Trimester results have not been calculated yet.", styles['Italic']))

    if result and result.remarks:
        elements.append(Spacer(1, 0.15 * inch))
        elements.append(Paragraph(f"Remarks: {result.remarks}", styles['Normal']))

    doc.build(elements)
    pdf_content = buffer.getvalue()
    buffer.close()
    return pdf_content
