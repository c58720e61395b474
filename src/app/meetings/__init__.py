"""Meeting room module -- personal links, meeting lifecycle and waiting room.

Provides the owner/meeting data layer, slug allocation, the lifecycle
manager that decides between redirecting and waiting, and the in-process
notification bus that wakes waiting visitors when the owner arrives.
"""
