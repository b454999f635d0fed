from slotdesk.models.business import Business
from slotdesk.models.resource import Resource
from slotdesk.models.appointment import Appointment

__all__ = ["Business", "Resource", "Appointment"]
