"""
Default notification templates, keyed by outbox entry type.

Placeholders use {name} syntax and are filled by MessageTemplateService
from the context NotificationService builds for each entry.
"""

CONFIRMATION_SUBJECT = "Reservation confirmed: {resource_name}"
CONFIRMATION_MESSAGE = """Hi {member_name},

Your reservation for {participant_name} is confirmed.

{resource_name}
{reservation_time}
{location}

Reservation #{reservation_id}"""

WAITLISTED_SUBJECT = "You're on the waitlist: {resource_name}"
WAITLISTED_MESSAGE = """Hi {member_name},

{resource_name} is currently full. {participant_name} has been added to the waitlist at position {position}.

We'll let you know as soon as a spot opens up.

Reservation #{reservation_id}"""

PROMOTED_SUBJECT = "A spot opened up: {resource_name}"
PROMOTED_MESSAGE = """Hi {member_name},

Good news! A spot opened up and {participant_name} has been moved from the waitlist to confirmed.

{resource_name}
{reservation_time}
{location}

Reservation #{reservation_id}"""

REMINDER_SUBJECT = "Reminder: {resource_name} in {lead_hours} hours"
REMINDER_MESSAGE = """Hi {member_name},

This is a reminder that {participant_name} has a reservation coming up.

{resource_name}
{reservation_time}
{location}

Reservation #{reservation_id}"""

TEMPLATES = {
    "confirmation": (CONFIRMATION_SUBJECT, CONFIRMATION_MESSAGE),
    "waitlisted": (WAITLISTED_SUBJECT, WAITLISTED_MESSAGE),
    "promoted": (PROMOTED_SUBJECT, PROMOTED_MESSAGE),
    "reminder": (REMINDER_SUBJECT, REMINDER_MESSAGE),
}
