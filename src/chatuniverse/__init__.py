"""ChatUniverse - cross-provider chat history index."""

__version__ = "0.1.0"
