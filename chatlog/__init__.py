# chatlog/__init__.py
"""
Chatlog — the file-backed message store behind a small polling web chatroom.
Sharded append-only JSON files, advisory sequence numbers, and revocation / reaction
side-tables merged onto the message stream at read time.
"""

__version__ = "0.1.0-dev"
