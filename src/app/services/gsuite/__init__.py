"""Google integration services: OAuth sign-in and Meet provisioning.

The OAuth manager obtains each owner's offline Calendar grant; the
provisioner uses it to create Google Meet rooms on demand.
"""

from src.app.services.gsuite.auth import GoogleOAuthManager
from src.app.services.gsuite.calendar import GoogleCalendarService, GoogleMeetProvisioner

__all__ = [
    "GoogleCalendarService",
    "GoogleMeetProvisioner",
    "GoogleOAuthManager",
]
