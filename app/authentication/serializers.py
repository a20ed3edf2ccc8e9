"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (read operations, embedded in chat member listings)
- Profile updates (display name and username)

Related files:
    - models.py: User and Profile models
    - views.py: CurrentUserView
"""

from rest_framework import serializers

from authentication.models import Profile, User, RESERVED_USERNAMES


class UserSerializer(serializers.ModelSerializer):
    """Read-only view of a user and the name chat displays for them."""

    full_name = serializers.SerializerMethodField()
    username = serializers.CharField(source="profile.username", read_only=True)

    class Meta:
        model = User
        fields = ["id", "email", "full_name", "username", "date_joined"]
        read_only_fields = fields

    def get_full_name(self, obj) -> str:
        return obj.get_full_name()


class ProfileUpdateSerializer(serializers.ModelSerializer):
    """
    Serializer for updating profile display fields.

    Username is validated for format, reserved names and case-insensitive
    uniqueness. Existing messages keep the sender name captured when
    they were sent.
    """

    username = serializers.RegexField(
        r"^[a-zA-Z0-9_-]{3,30}$",
        required=False,
        allow_blank=True,
        error_messages={
            "invalid": (
                "Username must be 3-30 characters and contain only "
                "letters, numbers, underscores, and hyphens."
            )
        },
    )

    class Meta:
        model = Profile
        fields = ["username", "first_name", "last_name"]

    def validate_username(self, value):
        """Validate reserved names and uniqueness."""
        username = value.lower().strip()
        if not username:
            return username

        if username in RESERVED_USERNAMES:
            raise serializers.ValidationError(
                f"The username '{username}' is reserved and cannot be used."
            )

        existing = Profile.objects.filter(username__iexact=username)
        if self.instance is not None:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise serializers.ValidationError("This username is already taken.")

        return username
