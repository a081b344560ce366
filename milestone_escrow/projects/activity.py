import logging

from .models import ActivityLogEntry

audit_logger = logging.getLogger('audit')


def record_activity(project, action, actor=None, **metadata):
    """
    Append an entry to the project's activity log and mirror it on the audit logger.
    ``actor=None`` records a system action.
    """
    entry = ActivityLogEntry.objects.create(
        project=project,
        action=action,
        actor=actor,
        metadata=metadata,
    )
    audit_logger.info(
        "activity project=%s action=%s actor=%s metadata=%s",
        project.pk, action, getattr(actor, 'pk', 'system'), metadata,
    )
    return entry
