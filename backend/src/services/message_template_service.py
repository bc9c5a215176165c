"""
Message template service for rendering notifications with placeholders.

Templates use {placeholder} names (e.g. {member_name}, {reservation_time});
unknown placeholders are left untouched so a template edit never breaks
delivery.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from core.message_template_constants import TEMPLATES
from utils.datetime_utils import format_datetime

logger = logging.getLogger(__name__)


class MessageTemplateService:
    """Service for rendering message templates with placeholders."""

    @staticmethod
    def render_message(template: str, context: Dict[str, Any]) -> str:
        """
        Render message template with placeholders.

        Replacement order: longest placeholders first to avoid substring
        conflicts between names that share a prefix.

        Args:
            template: Message template with placeholders
            context: Values keyed by placeholder name

        Returns:
            Rendered message with placeholders replaced
        """
        message = template
        for key in sorted(context.keys(), key=len, reverse=True):
            placeholder = f"{{{key}}}"
            value = context.get(key)
            message = message.replace(placeholder, "" if value is None else str(value))
        return message

    @staticmethod
    def render(entry_type: str, context: Dict[str, Any]) -> tuple[str, str]:
        """
        Render subject and body for an outbox entry type.

        Raises:
            KeyError: If no template exists for the entry type
        """
        subject_template, body_template = TEMPLATES[entry_type]
        subject = MessageTemplateService.render_message(subject_template, context)
        body = MessageTemplateService.render_message(body_template, context)
        # Collapse blank runs left by empty optional values (e.g. no location)
        body = re.sub(r"\n{3,}", "\n\n", body)
        return subject, body.strip()

    @staticmethod
    def format_interval(start: Optional[datetime], end: Optional[datetime]) -> str:
        """Human-readable time range ("Mon 01/06 9:00 AM - 10:00 AM")."""
        if start is None:
            return ""
        text = format_datetime(start)
        if end is not None:
            end_text = format_datetime(end)
            if end_text[:9] == text[:9]:
                # Same day: show only the end time
                end_text = end_text[10:]
            text = f"{text} - {end_text}"
        return text

