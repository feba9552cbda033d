"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every event a subscriber can receive.
Edits and deletes are delivered as new events on the chat channel —
a consumer never sees an already-delivered event change under it.
"""

MESSAGE_ADDED = "message.added"
MESSAGE_EDITED = "message.edited"
MESSAGE_DELETED = "message.deleted"
