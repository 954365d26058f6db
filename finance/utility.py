from datetime import datetime, time, timedelta
from decimal import Decimal

from django.conf import settings
from django.utils import timezone
from pytz import timezone as pytz_timezone


def school_timezone():
    return pytz_timezone(settings.TIME_ZONE)


def school_now():
    return timezone.localtime(timezone.now(), timezone=school_timezone())


def school_today():
    """The calendar day at the school, which decides daily verifications and receipt sequences."""
    return school_now().date()


def day_bounds(day):
    """Aware [start, end) datetimes covering `day` in the school's time zone."""
    tz = school_timezone()
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))
    return start, end


def format_gnf(amount):
    """1500000 -> '1 500 000 GNF'. Guinean francs have no minor unit."""
    if amount is None:
        return ''
    value = Decimal(amount).quantize(Decimal('1'))
    return f"{value:,}".replace(',', ' ') + " GNF"
