import logging

from django.contrib.auth import get_user_model
from django.contrib.auth.signals import user_logged_in, user_login_failed
from django.db.models import F
from django.dispatch import receiver
from django.utils import timezone

logger = logging.getLogger(__name__)

User = get_user_model()


@receiver(user_login_failed)
def count_failed_login(sender, credentials, request=None, **kwargs):
    email = (credentials or {}).get('email') or (credentials or {}).get('username')
    if not email:
        return

    updated = User.objects.filter(email__iexact=email).update(
        failed_login_count=F('failed_login_count') + 1,
        last_failed_login_at=timezone.now(),
    )
    if updated:
        logger.info(f"Failed login recorded for {email}")


@receiver(user_logged_in)
def reset_failed_logins(sender, request, user, **kwargs):
    if user.failed_login_count:
        user.failed_login_count = 0
        user.save(update_fields=['failed_login_count'])
