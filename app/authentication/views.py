"""
Authentication views.

Token issuance and refresh are served by djangorestframework-simplejwt
(see urls.py). This module adds the current-user endpoint.

Endpoints:
    GET   /api/v1/auth/me/  - Current user
    PATCH /api/v1/auth/me/  - Update display name / username
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.models import Profile
from authentication.serializers import ProfileUpdateSerializer, UserSerializer


class CurrentUserView(APIView):
    """Retrieve or update the authenticated user."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user",
        tags=["Auth"],
        responses={200: UserSerializer},
    )
    def get(self, request):
        return Response(UserSerializer(request.user).data)

    @extend_schema(
        summary="Update current user's profile",
        description=(
            "Changes the name shown on future messages. Messages already "
            "sent keep the name captured at send time."
        ),
        tags=["Auth"],
        request=ProfileUpdateSerializer,
        responses={200: UserSerializer},
    )
    def patch(self, request):
        profile, _ = Profile.objects.get_or_create(user=request.user)
        serializer = ProfileUpdateSerializer(
            profile, data=request.data, partial=True
        )
        serializer.is_valid(raise_exception=True)
        serializer.save()

        request.user.refresh_from_db()
        return Response(UserSerializer(request.user).data)
