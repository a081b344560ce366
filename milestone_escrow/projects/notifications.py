"""
Outbound notifications for project events.

Delivery is fire-and-forget: it is scheduled with ``transaction.on_commit`` so
rolled-back transitions never notify, and a delivery failure is logged without
affecting the state change that triggered it.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.utils.module_loading import import_string

from .models import Project

logger = logging.getLogger(__name__)


EVENT_SUBJECTS = {
    'milestone-created': "New milestone on {title}",
    'milestone-started': "Work started on a milestone of {title}",
    'milestone-submitted': "A milestone of {title} is ready for review",
    'milestone-approved': "A milestone of {title} was approved",
    'milestone-auto-approved': "A milestone of {title} was approved automatically",
    'milestone-auto-approve-warning': "A milestone of {title} will be approved automatically soon",
    'revision-requested': "Revisions requested on {title}",
    'payment-failed': "Payment release failed for {title}",
    'dispute-opened': "A dispute was opened on {title}",
    'dispute-updated': "A dispute on {title} was updated",
    'dispute-resolved': "A dispute on {title} was resolved",
    'dispute-withdrawn': "A dispute on {title} was withdrawn",
    'project-completed': "{title} is complete",
}


class BaseNotifier:
    def notify(self, project_id, event_name: str, payload: dict):
        raise NotImplementedError


class EmailNotifier(BaseNotifier):
    def notify(self, project_id, event_name, payload):
        project = Project.objects.select_related('client', 'freelancer').get(pk=project_id)
        recipients = [user.email for user in (project.client, project.freelancer) if user is not None]
        subject = EVENT_SUBJECTS.get(event_name, "Update on {title}").format(title=project.title)
        lines = [f"{key}: {value}" for key, value in sorted(payload.items())]
        body = f"{subject}.\n\n" + "\n".join(lines) + f"\n\n{settings.SITE_NAME}"
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, recipients)


def get_notifier():
    return import_string(settings.NOTIFIER)()


def _deliver(notifier, project_id, event_name, payload):
    try:
        notifier.notify(project_id, event_name, payload)
        logger.info(f"Notification '{event_name}' sent for project {project_id}")
    except Exception as e:
        logger.error(f"Notification '{event_name}' for project {project_id} failed: {str(e)}")


def notify_on_commit(notifier, project_id, event_name, payload=None):
    payload = dict(payload or {})
    transaction.on_commit(lambda: _deliver(notifier, project_id, event_name, payload))
