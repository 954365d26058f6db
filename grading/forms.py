from decimal import Decimal, InvalidOperation

from django import forms
from django.core.exceptions import ValidationError

from admin_site.models import TrimesterModel, GradeSubjectModel
from student.models import StudentModel
from .models import EvaluationModel, StudentTrimesterModel, TrimesterCalculationJob


class EvaluationBulkForm(forms.Form):
    """
    Scores of one evaluation for a subject of a grade. `scores` is a list of
    {"student": id, "score": number, "notes": ...}.
    """
    trimester = forms.ModelChoiceField(queryset=TrimesterModel.objects.all())
    grade_subject = forms.ModelChoiceField(queryset=GradeSubjectModel.objects.select_related('grade', 'subject'))
    type = forms.ChoiceField(choices=EvaluationModel.Type.choices)
    evaluation_date = forms.DateField()
    max_score = forms.DecimalField(required=False, max_digits=5, decimal_places=2, min_value=Decimal('1'))
    scores = forms.JSONField()

    def clean_max_score(self):
        return self.cleaned_data.get('max_score') or Decimal('20')

    def clean_scores(self):
        scores = self.cleaned_data['scores']
        if not isinstance(scores, list) or not scores:
            raise ValidationError("Provide at least one score.")

        rows = []
        for entry in scores:
            if not isinstance(entry, dict):
                raise ValidationError("Each score must be an object.")
            try:
                student_id = int(entry.get('student'))
                score = Decimal(str(entry.get('score')))
            except (TypeError, ValueError, InvalidOperation):
                raise ValidationError("Each score needs a student id and a numeric score.")
            if not score.is_finite() or score < 0:
                raise ValidationError(f"Invalid score for student {student_id}.")
            rows.append((student_id, score.quantize(Decimal('0.01')), (entry.get('notes') or '').strip()[:255]))

        ids = [student_id for student_id, _, _ in rows]
        if len(set(ids)) != len(ids):
            raise ValidationError("A student is listed more than once.")
        students = StudentModel.objects.in_bulk(ids)
        missing = [str(student_id) for student_id in ids if student_id not in students]
        if missing:
            raise ValidationError(f"Unknown student(s): {', '.join(missing)}.")
        return [{'student': students[student_id], 'score': score, 'notes': notes}
                for student_id, score, notes in rows]


class EvaluationUpdateForm(forms.ModelForm):

    class Meta:
        model = EvaluationModel
        fields = ['score', 'max_score', 'evaluation_date', 'notes']

    def clean(self):
        cleaned_data = super().clean()
        score, max_score = cleaned_data.get('score'), cleaned_data.get('max_score')
        if score is not None and max_score is not None and score > max_score:
            raise ValidationError("The score cannot exceed the maximum score.")
        return cleaned_data


class ResultsCalculationForm(forms.ModelForm):
    """Starts the background calculation of a trimester's results."""

    class Meta:
        model = TrimesterCalculationJob
        fields = ['trimester', 'grades', 'recalculate']

    def clean(self):
        cleaned_data = super().clean()
        trimester, grades = cleaned_data.get('trimester'), cleaned_data.get('grades')
        if trimester and grades:
            outside = [grade.name for grade in grades if grade.school_year_id != trimester.school_year_id]
            if outside:
                raise ValidationError(
                    f"Grade(s) {', '.join(outside)} do not belong to the trimester's school year."
                )
        return cleaned_data


class StudentResultForm(forms.Form):
    DECISION_CHOICES = [choice for choice in StudentTrimesterModel.Decision.choices
                        if choice[0] != StudentTrimesterModel.Decision.PENDING]

    conduct = forms.DecimalField(required=False, max_digits=4, decimal_places=2, min_value=0, max_value=20)
    decision = forms.ChoiceField(required=False, choices=DECISION_CHOICES)
    remarks = forms.CharField(required=False, max_length=1000)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('decision') == '':
            cleaned_data['decision'] = None
        if 'remarks' not in self.data:
            cleaned_data['remarks'] = None
        return cleaned_data
