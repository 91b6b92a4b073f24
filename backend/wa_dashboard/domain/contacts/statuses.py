from enum import Enum

CONTACT_STATUS_ONGOING = "ongoing"
CONTACT_STATUS_CONVERTED = "converted"
CONTACT_STATUS_REJECTED = "rejected"
CONTACT_STATUS_HUMAN_TAKEOVER = "human_takeover"
CONTACT_STATUS_FOLLOW_UP = "follow_up"

LEAD_TEMPERATURE_HOT = "hot"
LEAD_TEMPERATURE_WARM = "warm"
LEAD_TEMPERATURE_COLD = "cold"

HOT_LEAD_CLICK_THRESHOLD = 5


class ContactStatus(str, Enum):
    ongoing = CONTACT_STATUS_ONGOING
    converted = CONTACT_STATUS_CONVERTED
    rejected = CONTACT_STATUS_REJECTED
    human_takeover = CONTACT_STATUS_HUMAN_TAKEOVER
    follow_up = CONTACT_STATUS_FOLLOW_UP


class LeadTemperature(str, Enum):
    hot = LEAD_TEMPERATURE_HOT
    warm = LEAD_TEMPERATURE_WARM
    cold = LEAD_TEMPERATURE_COLD


# Contacts in these statuses never enter or progress through a workflow.
TERMINAL_STATUSES = frozenset({ContactStatus.converted, ContactStatus.rejected})
