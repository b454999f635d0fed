"""Google Calendar Integration"""

from .client import GoogleCalendarClient
from .oauth import GoogleCalendarOAuth

__all__ = ["GoogleCalendarClient", "GoogleCalendarOAuth"]
