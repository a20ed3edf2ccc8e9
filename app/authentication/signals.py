"""
Django signals for authentication.

Auto-creates the Profile that supplies chat display names.

Usage:
    Signals are connected in AuthenticationConfig.ready().
"""

import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_user_profile(sender, instance, created, **kwargs):
    """
    Create a Profile for newly created users.

    Args:
        sender: The User model class
        instance: The User instance that was saved
        created: Boolean indicating if this is a new record
        **kwargs: Additional signal arguments
    """
    if created:
        from authentication.models import Profile

        Profile.objects.get_or_create(user=instance)
        logger.debug(f"Profile created for user: {instance.pk}")
