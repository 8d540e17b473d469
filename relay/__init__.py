"""Multi-tenant relay between Twilio media streams and Gemini Live."""

__version__ = "0.1.0"
