"""
Django admin configuration for authentication models.

Registers User and Profile with the Django admin site.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from authentication.models import Profile, User


class ProfileInline(admin.StackedInline):
    """Profile shown on the user change page."""

    model = Profile
    can_delete = False
    fields = ("username", "first_name", "last_name")


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin for the email-based User model."""

    list_display = ("email", "display_name", "is_active", "is_staff", "date_joined")
    list_filter = ("is_active", "is_staff", "is_superuser", "date_joined")
    search_fields = ("email", "profile__username", "profile__first_name")
    ordering = ("-date_joined",)
    inlines = [ProfileInline]

    fieldsets = (
        (None, {"fields": ("email", "password")}),
        (
            "Status",
            {"fields": ("is_active", "is_staff", "is_superuser")},
        ),
        ("Permissions", {"fields": ("groups", "user_permissions")}),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "password1", "password2"),
            },
        ),
    )
    readonly_fields = ("date_joined", "last_login")

    @admin.display(description="Display name")
    def display_name(self, obj):
        return obj.get_full_name()
