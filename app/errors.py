from __future__ import annotations


class RotaError(Exception):
    """Base class for rota engine failures."""


class NotFoundError(RotaError, LookupError):
    """A referenced record does not exist."""


class UnknownShiftGroupError(NotFoundError):
    def __init__(self, group_name: str) -> None:
        super().__init__(f"Shift pattern not found for group: {group_name}")
        self.group_name = group_name


class MissingDepartmentError(NotFoundError):
    def __init__(self, department_id: int | None, context: str = "") -> None:
        message = f"Department {department_id} was not found"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)
        self.department_id = department_id


class MissingPorterError(NotFoundError):
    def __init__(self, porter_id: int | None, context: str = "") -> None:
        message = f"Porter {porter_id} was not found or is inactive"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)
        self.porter_id = porter_id


class InvalidDateRangeError(RotaError, ValueError):
    def __init__(self, start, end) -> None:
        super().__init__(f"End date {end} is before start date {start}.")
        self.start = start
        self.end = end


class ShiftPatternConfigError(RotaError):
    """Shift patterns for a category are not a complementary A/B pair."""
