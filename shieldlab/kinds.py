from enum import Enum


class EventKind(str, Enum):
    """Kinds the detectors act on. Anything else is OTHER but still stored verbatim."""

    FAILED_LOGIN = "failedlogin"
    LOGIN_FAILURE = "loginfailure"
    LOGIN_SUCCESS = "loginsuccess"
    FILE_CREATE = "filecreate"
    FILE_MODIFY = "filemodify"
    FILE_DELETE = "filedelete"
    FILE_RENAME = "filerename"
    OTHER = "other"

    @classmethod
    def parse(cls, text: str | None) -> "EventKind":
        value = (text or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class Severity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"


# both spellings show up depending on the producer (agent vs log parser)
FAILED_LOGIN_KINDS = (EventKind.FAILED_LOGIN.value, EventKind.LOGIN_FAILURE.value)

FILE_KINDS = (
    EventKind.FILE_CREATE.value,
    EventKind.FILE_MODIFY.value,
    EventKind.FILE_DELETE.value,
    EventKind.FILE_RENAME.value,
)

IMMEDIATE_KINDS = frozenset({
    EventKind.FAILED_LOGIN,
    EventKind.LOGIN_FAILURE,
    EventKind.FILE_CREATE,
    EventKind.FILE_MODIFY,
    EventKind.FILE_DELETE,
})
