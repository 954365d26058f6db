from django import forms
from django.core.exceptions import ValidationError

from admin_site.models import GradeModel
from .models import AttendanceSessionModel, AttendanceRecordModel


class AttendanceSessionForm(forms.Form):
    grade = forms.ModelChoiceField(queryset=GradeModel.objects.all())
    date = forms.DateField()
    entry_mode = forms.ChoiceField(choices=AttendanceSessionModel.EntryMode.choices)


class AttendanceBatchForm(forms.Form):
    """
    Batch submission for one grade and day. `records` is a list of
    {"student": id, "status": ..., "notes": ...}; every student must be
    enrolled in the grade.
    """
    entry_mode = forms.ChoiceField(choices=AttendanceSessionModel.EntryMode.choices)
    records = forms.JSONField(required=False)
    is_complete = forms.BooleanField(required=False)

    def __init__(self, *args, enrolled=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.enrolled = {student.id: student for student in (enrolled or [])}

    def clean_records(self):
        records = self.cleaned_data['records'] or []
        if not isinstance(records, list):
            raise ValidationError("Records must be a list.")

        cleaned, seen = [], set()
        for entry in records:
            if not isinstance(entry, dict):
                raise ValidationError("Each record must be an object.")
            try:
                student_id = int(entry.get('student'))
            except (TypeError, ValueError):
                raise ValidationError("Each record needs a student id.")
            student = self.enrolled.get(student_id)
            if student is None:
                raise ValidationError(f"Student {student_id} is not enrolled in this grade.")
            if student_id in seen:
                raise ValidationError(f"Student {student_id} is listed more than once.")
            status = entry.get('status')
            if status not in AttendanceRecordModel.Status.values:
                raise ValidationError(f"Invalid status '{status}'.")
            notes = entry.get('notes') or ''
            if len(notes) > 255:
                raise ValidationError("Notes cannot exceed 255 characters.")
            seen.add(student_id)
            cleaned.append({'student': student, 'status': status, 'notes': notes.strip()})
        return cleaned


class AttendanceRecordForm(forms.Form):
    session = forms.ModelChoiceField(queryset=AttendanceSessionModel.objects.all())
    status = forms.ChoiceField(choices=AttendanceRecordModel.Status.choices)
    notes = forms.CharField(required=False, max_length=255)


class DateRangeForm(forms.Form):
    start_date = forms.DateField(required=False)
    end_date = forms.DateField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        start_date, end_date = cleaned_data.get('start_date'), cleaned_data.get('end_date')
        if start_date and end_date and start_date > end_date:
            raise ValidationError("The start date must be before the end date.")
        return cleaned_data

