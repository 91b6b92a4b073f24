from enum import Enum

MESSAGE_DIRECTION_INCOMING = "incoming"
MESSAGE_DIRECTION_OUTGOING = "outgoing"

MESSAGE_STATUS_SENT = "sent"
MESSAGE_STATUS_DELIVERED = "delivered"
MESSAGE_STATUS_READ = "read"
MESSAGE_STATUS_FAILED = "failed"

OUTGOING_PROFILE_DASHBOARD = "You"
OUTGOING_PROFILE_BOT = "Bot"
OUTGOING_PROFILE_WORKFLOW = "Workflow"
BOT_MESSAGE_PLACEHOLDER = "[Bot Message]"


class MessageDirection(str, Enum):
    incoming = MESSAGE_DIRECTION_INCOMING
    outgoing = MESSAGE_DIRECTION_OUTGOING
