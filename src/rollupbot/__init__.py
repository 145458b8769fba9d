"""Discord bot that posts daily summaries of project forum threads."""

__version__ = "0.1.0"
