"""
codebase-rag — chat with a codebase through retrieval-grounded, cited answers.

Source files are cut into chunks at lexical declaration boundaries, embedded
into an in-memory vector index, and searched before every answer the chat
model gives.
"""

__version__ = "0.1.0"
