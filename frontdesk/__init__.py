"""Front-desk API: multi-tenant AI assistant for inbound customer messages."""
