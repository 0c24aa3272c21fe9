from frontdesk.schemas.chat import ChatRequest, ChatResponse
from frontdesk.schemas.inbound import Channel, CustomerHints, InboundMessage, IngressOutcome

__all__ = ["ChatRequest", "ChatResponse", "Channel", "CustomerHints", "InboundMessage", "IngressOutcome"]
