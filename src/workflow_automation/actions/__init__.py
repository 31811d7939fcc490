"""Action dispatch package."""
from workflow_automation.actions.collaborators import (
    InMemoryMailer,
    InMemoryRecordStore,
    InMemoryUserDirectory,
    Mailer,
    RecordStore,
    UserDirectory,
)
from workflow_automation.actions.contracts import (
    ActionContext,
    ActionError,
    ActionPermanentFailure,
    ActionResult,
    ActionTransientFailure,
    CreatedRecord,
    FailureCategory,
)
from workflow_automation.actions.dispatcher import (
    ActionDispatcher,
    UnregisteredActionError,
    build_default_dispatcher,
    run_with_timeout,
)

__all__ = [
    "ActionContext",
    "ActionDispatcher",
    "ActionError",
    "ActionPermanentFailure",
    "ActionResult",
    "ActionTransientFailure",
    "CreatedRecord",
    "FailureCategory",
    "InMemoryMailer",
    "InMemoryRecordStore",
    "InMemoryUserDirectory",
    "Mailer",
    "RecordStore",
    "UnregisteredActionError",
    "UserDirectory",
    "build_default_dispatcher",
    "run_with_timeout",
]
