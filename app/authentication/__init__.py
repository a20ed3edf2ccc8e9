"""
Authentication application.

This app provides the user identity the chat service relies on: an
email-based user model, profile data used for display names, and JWT
issuance for REST and WebSocket clients.

Key components:
    - User model: Custom email-based user authentication
    - Profile model: Display name fields (username, first/last name)
    - Token endpoints: simplejwt obtain/refresh
    - Current user endpoint: Read and update the caller's profile

Usage:
    from authentication.models import User, Profile
"""
