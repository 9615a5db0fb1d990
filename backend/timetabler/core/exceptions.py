class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class InputError(AppError):
    """Raised when the entity snapshot is empty or references entities that do not exist."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class InfeasibleQuota(AppError):
    """Raised by the search when a block cannot be placed within its budget.

    Always caught inside the search and turned into a shortfall entry of the
    completeness report.
    """
    def __init__(self, subject_id: str, batch_id: str, hours: int):
        self.subject_id = subject_id
        self.batch_id = batch_id
        self.hours = hours
        super().__init__(
            f"Could not place {hours} hour(s) of subject {subject_id} for batch {batch_id}",
            status_code=409,
            details={"subject_id": subject_id, "batch_id": batch_id, "hours": hours},
        )

class ValidatorViolation(AppError):
    """Raised when the final scan finds a hard-constraint breach in engine output."""
    def __init__(self, message: str, violations: list[dict]):
        self.violations = violations
        super().__init__(message, status_code=500, details={"violations": violations})

class GenerationTimeout(AppError):
    """Raised when a generation run does not finish within its time limit."""
    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Timetable generation did not finish within {timeout_seconds:g} seconds",
            status_code=504,
            details={"timeout_seconds": timeout_seconds},
        )

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
