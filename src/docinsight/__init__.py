"""Document insight pipeline: ingestion, AI questions, chat history and reports."""

__version__ = "0.1.0"
