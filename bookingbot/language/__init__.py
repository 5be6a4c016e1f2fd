"""Language layer for the booking bot.

This module provides:
- Customer/owner-facing Hebrew text and date formatting (messages_he.py)
"""

from .messages_he import get_text, is_placeholder_name, is_new_session_message

__all__ = ['get_text', 'is_placeholder_name', 'is_new_session_message']
