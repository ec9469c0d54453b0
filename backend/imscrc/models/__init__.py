from imscrc.models.activity_log import ActivityLog  # noqa: F401
from imscrc.models.facility import Facility  # noqa: F401
from imscrc.models.pdl import PDL  # noqa: F401
from imscrc.models.schedule import Schedule, ScheduleStatus, ScheduleType  # noqa: F401
from imscrc.models.schedule_conflict import (  # noqa: F401
    OPEN_STATUSES,
    ConflictSeverity,
    ConflictStatus,
    ConflictType,
    ScheduleConflict,
    make_pair_key,
)
