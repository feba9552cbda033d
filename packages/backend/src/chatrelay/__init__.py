"""ChatRelay — multi-instance real-time chat backend.

Messages are committed to PostgreSQL, then fanned out over a shared
Redis channel bus to every live subscriber of the conversation, no
matter which service instance the subscriber is connected to.
"""

__version__ = "0.1.0"
