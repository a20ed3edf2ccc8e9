"""
Tests for chat app.

This package contains test modules for:
- test_models.py: Conversation, Membership, Message model tests
- test_services.py: Conversation, membership, message and receipt services
- test_events.py: Event envelopes and fan-out to live sessions
- test_connections.py: Connection directory implementations
- test_pagination.py: Message cursors and page metadata
- test_serializers.py: Rendering of messages, members and conversations
- test_views.py: REST API endpoint tests
- test_consumers.py: WebSocket consumer tests
- test_middleware.py: JWT WebSocket authentication
- test_scenarios.py: Multi-step flows over the REST API

Usage:
    pytest chat/tests/
    pytest chat/tests/test_consumers.py
"""
