"""WhatsApp to Dialogflow webhook relay."""

__version__ = "0.1.0"
