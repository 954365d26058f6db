from django.contrib.auth.models import Group, Permission
from django.core.management.base import BaseCommand
from django.db import transaction

APPS = ('admin_site', 'student', 'finance', 'attendance', 'grading')

# 'app.*' grants every permission of the app.
ROLES = {
    'Director': [f'{app}.*' for app in APPS],
    'Accountant': [
        'finance.*',
        'student.view_enrollmentmodel', 'student.view_studentmodel',
        'admin_site.view_schoolyearmodel', 'admin_site.view_grademodel',
    ],
    'Secretary': [
        'student.view_enrollmentmodel', 'student.add_enrollmentmodel', 'student.change_enrollmentmodel',
        'student.view_studentmodel', 'student.view_studentroomassignmentmodel',
        'student.add_studentroomassignmentmodel', 'student.change_studentroomassignmentmodel',
        'finance.view_paymentmodel', 'finance.add_paymentmodel',
        'admin_site.view_schoolyearmodel', 'admin_site.view_trimestermodel', 'admin_site.view_grademodel',
        'attendance.view_attendancesessionmodel', 'attendance.view_attendancerecordmodel',
        'admin_site.view_timeperiodmodel', 'admin_site.view_scheduleslotmodel',
    ],
    'Teacher': [
        'attendance.view_attendancesessionmodel', 'attendance.add_attendancesessionmodel',
        'attendance.view_attendancerecordmodel', 'attendance.add_attendancerecordmodel',
        'grading.view_evaluationmodel', 'grading.add_evaluationmodel', 'grading.change_evaluationmodel',
        'grading.view_studenttrimestermodel',
        'student.view_studentmodel', 'student.view_studentroomassignmentmodel',
        'admin_site.view_grademodel', 'admin_site.view_trimestermodel',
        'admin_site.view_timeperiodmodel', 'admin_site.view_scheduleslotmodel',
    ],
}


def resolve_permissions(codes):
    """Permission objects for 'app.codename' / 'app.*' codes, and the codes that matched nothing."""
    permissions, missing = [], []
    for code in codes:
        app_label, codename = code.split('.')
        queryset = Permission.objects.filter(content_type__app_label=app_label)
        if codename != '*':
            queryset = queryset.filter(codename=codename)
        found = list(queryset)
        if not found:
            missing.append(code)
        permissions.extend(found)
    return permissions, missing


class Command(BaseCommand):
    help = 'Creates the Director, Accountant, Secretary and Teacher groups with their permissions'

    def add_arguments(self, parser):
        parser.add_argument('--reset', action='store_true',
                            help='Remove permissions the groups have beyond their role')

    @transaction.atomic
    def handle(self, *args, **options):
        for name, codes in ROLES.items():
            group, created = Group.objects.get_or_create(name=name)
            permissions, missing = resolve_permissions(codes)
            if options['reset']:
                group.permissions.set(permissions)
            else:
                group.permissions.add(*permissions)

            for code in missing:
                self.stdout.write(self.style.WARNING(f"{name}: permission {code} not found, run migrate first"))
            self.stdout.write(self.style.SUCCESS(
                f"{'Created' if created else 'Updated'} group {name} with {group.permissions.count()} permission(s)"
            ))
