from school_sessions.core.models.academic_session import DEFAULT_PROMOTION_CRITERIA, AcademicSession
from school_sessions.core.models.class_model import SchoolClass
from school_sessions.core.models.rollover_run import RolloverRun
from school_sessions.core.models.student import Student
from school_sessions.core.models.student_attendance import StudentAttendance

__all__ = [
    "DEFAULT_PROMOTION_CRITERIA",
    "AcademicSession",
    "RolloverRun",
    "SchoolClass",
    "Student",
    "StudentAttendance",
]
