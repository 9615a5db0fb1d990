from timetabler.models.batch import Batch  # noqa: F401
from timetabler.models.department import Department  # noqa: F401
from timetabler.models.generated_timetable import GeneratedTimetable  # noqa: F401
from timetabler.models.room import Room  # noqa: F401
from timetabler.models.subject import Subject, SubjectType  # noqa: F401
