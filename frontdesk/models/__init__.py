from frontdesk.models.appointment import Appointment
from frontdesk.models.business import Business
from frontdesk.models.conversation import Conversation
from frontdesk.models.customer import Customer
from frontdesk.models.inbound_job import InboundJob
from frontdesk.models.integration import Integration
from frontdesk.models.message import Message
from frontdesk.models.service import Service
from frontdesk.models.webhook_log import WebhookLog

__all__ = [
    "Business",
    "Service",
    "Customer",
    "Conversation",
    "Message",
    "Appointment",
    "Integration",
    "InboundJob",
    "WebhookLog",
]
