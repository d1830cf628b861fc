from app.models.application import Application
from app.models.lead import Lead
from app.models.lead_note import LeadNote
from app.models.profile import Profile

__all__ = [
    "Application",
    "Lead",
    "LeadNote",
    "Profile",
]
