from enum import Enum


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class PromotionStatus(str, Enum):
    PENDING = "pending"
    PROMOTED = "promoted"
    RETAINED = "retained"
    GRADUATED = "graduated"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class RolloverRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RolloverStep(str, Enum):
    """Durable steps of a rollover run, in execution order."""

    CREATE_SESSION = "create_session"
    COPY_CLASSES = "copy_classes"
    MIGRATE_STUDENTS = "migrate_students"
    DEACTIVATE_SOURCE_CLASSES = "deactivate_source_classes"
