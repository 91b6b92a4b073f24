from enum import Enum

WORKFLOW_LOG_SENT = "sent"
WORKFLOW_LOG_FAILED = "failed"

DEFAULT_TEMPLATE_LANGUAGE = "en_US"


class WorkflowLogStatus(str, Enum):
    sent = WORKFLOW_LOG_SENT
    failed = WORKFLOW_LOG_FAILED
