"""
Custom user manager for email-based authentication.

Related files:
    - models.py: User model that uses this manager

Security:
    - Passwords are automatically hashed via set_password()
    - Email addresses are normalized (lowercase domain)
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Manager for User with email as the login identifier.

    Profile fields (first_name, last_name, username) are accepted as
    keyword arguments and written to the auto-created Profile.

    Usage:
        user = User.objects.create_user(
            email='user@example.com',
            password='securepassword',
            first_name='Ada',
        )
    """

    PROFILE_FIELDS = ("first_name", "last_name", "username")

    def create_user(self, email, password=None, **extra_fields):
        """
        Create and save a regular user with the given email and password.

        Args:
            email: User's email address (required)
            password: User's password (unusable when omitted)
            **extra_fields: User fields, plus optional profile fields

        Returns:
            User: The created user instance

        Raises:
            ValueError: If email is not provided
        """
        if not email:
            raise ValueError("The Email field must be set")

        email = self.normalize_email(email)
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)

        profile_data = {
            field: extra_fields.pop(field)
            for field in self.PROFILE_FIELDS
            if field in extra_fields
        }

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)

        if profile_data:
            # Profile row is created by the post_save signal
            profile = user.profile
            for field, value in profile_data.items():
                setattr(profile, field, value)
            profile.save()

        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create and save a superuser with the given email and password.

        Raises:
            ValueError: If is_staff or is_superuser is not True
        """
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)
