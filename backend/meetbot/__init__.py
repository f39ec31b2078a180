"""meetbot: meeting agent that answers spoken questions through a RAG pipeline."""

__version__ = "0.1.0"
