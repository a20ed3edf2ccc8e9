"""
Authentication models.

This module defines the identity models the chat system references:
- User: Email-based account; the identity behind every member and sender
- Profile: Display data for a user (OneToOne with User)

Related files:
    - managers.py: Custom user manager for email-based creation
    - signals.py: Auto-create profile on user creation

Chat integration:
    - Membership, Message and MessageReadStatus hold foreign keys to User
    - Sender and reader display names are snapshotted from get_full_name()
    - Inactive users cannot be added to conversations
"""

import re

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models.functions import Lower

from core.models import BaseModel
from authentication.managers import UserManager


RESERVED_USERNAMES = frozenset([
    "admin", "administrator", "root", "system", "api", "support",
    "help", "chat", "everyone", "here", "channel", "conversation",
    "null", "undefined", "anonymous", "moderator", "bot",
])


def validate_username_not_reserved(value):
    """Validate that username is not in the reserved list."""
    if value.lower() in RESERVED_USERNAMES:
        raise ValidationError(
            f"The username '{value}' is reserved and cannot be used."
        )


def validate_username_format(value):
    """Validate username format: 3-30 chars, alphanumeric + _ + -."""
    if not re.match(r"^[a-zA-Z0-9_-]{3,30}$", value):
        raise ValidationError(
            "Username must be 3-30 characters and contain only "
            "letters, numbers, underscores, and hyphens."
        )


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        is_active: Whether the account may join conversations and connect
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        user = User.objects.create_user(
            email='user@example.com',
            password='securepassword'
        )
        user.get_full_name()  # display name used by chat
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )
    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        """
        Return the name shown next to this user's messages.

        Falls back to the username, then the email, when the profile
        has no name set.
        """
        try:
            profile = self.profile
        except Profile.DoesNotExist:
            return self.email
        return profile.full_name or profile.username or self.email

    def get_short_name(self):
        """Return first name from profile, or the email local part."""
        try:
            return self.profile.first_name or self.email.split("@")[0]
        except Profile.DoesNotExist:
            return self.email.split("@")[0]


class Profile(BaseModel):
    """
    Display data for a user.

    Fields:
        user: OneToOne link to User (also serves as primary key)
        username: Unique handle (3-30 chars, alphanumeric + _ + -)
        first_name: User's first name
        last_name: User's last name

    Note:
        Profile is automatically created via signals when a User is created.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
        primary_key=True,
        help_text="User this profile belongs to",
    )
    first_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="User's first name",
    )
    last_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="User's last name",
    )
    username = models.CharField(
        max_length=30,
        blank=True,
        db_index=True,
        validators=[validate_username_format, validate_username_not_reserved],
        help_text="Unique username (3-30 chars, alphanumeric + _ + -)",
    )

    class Meta:
        db_table = "authentication_profile"
        verbose_name = "profile"
        verbose_name_plural = "profiles"
        constraints = [
            models.UniqueConstraint(
                Lower("username"),
                name="unique_username_case_insensitive",
                condition=models.Q(username__gt=""),
            ),
        ]

    def __str__(self):
        return self.username or str(self.user)

    @property
    def full_name(self):
        """Return full name or empty string."""
        return f"{self.first_name} {self.last_name}".strip()

    def save(self, *args, **kwargs):
        """Normalize username before saving."""
        if self.username:
            self.username = self.username.lower()
        super().save(*args, **kwargs)
