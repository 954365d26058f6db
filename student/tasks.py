# student/tasks.py

import logging

from celery import shared_task

from .services import auto_approve_due_enrollments, expire_draft_enrollments

logger = logging.getLogger(__name__)


@shared_task
def auto_approve_enrollments_task():
    """
    Periodic task: completes submitted enrollments whose auto-approval date
    has passed without a director decision.
    """
    try:
        approved = auto_approve_due_enrollments()
    except Exception as e:
        logger.error(f"Enrollment auto-approval failed: {e}", exc_info=True)
        raise
    logger.info(f"Auto-approved {approved} enrollment(s)")
    return approved


@shared_task
def expire_draft_enrollments_task():
    """Periodic task: cancels drafts left untouched past their expiry date."""
    try:
        expired = expire_draft_enrollments()
    except Exception as e:
        logger.error(f"Draft enrollment expiry failed: {e}", exc_info=True)
        raise
    logger.info(f"Cancelled {expired} expired draft enrollment(s)")
    return expired
