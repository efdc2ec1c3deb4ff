from students_api.models.student import STUDENT_FIELDS, StudentCreate, StudentUpdate

__all__ = ["STUDENT_FIELDS", "StudentCreate", "StudentUpdate"]
