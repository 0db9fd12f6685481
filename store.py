import threading
from typing import Dict, Iterable, List, Optional

from schemas import Announcement, AttendanceEvent, AttendanceReport, SharedFile

DEFAULT_CLASSES = ("L3", "M1")
DEFAULT_TIMETABLE = {"teacher-1": 6}
REPORT_TEACHER_ID = "teacher-1"


class Store:
    """In-memory state shared by every request handler.

    A single lock guards all four collections. Listings hand out copies so
    callers can serialize them after the lock is released.
    """

    def __init__(self, classes: Optional[Iterable[str]] = None, timetable: Optional[Dict[str, int]] = None):
        self._lock = threading.Lock()
        self._attendance: List[AttendanceEvent] = []
        self._files_by_class: Dict[str, List[SharedFile]] = {
            class_id: [] for class_id in (DEFAULT_CLASSES if classes is None else classes)
        }
        self._announcements: List[Announcement] = []
        self._timetable: Dict[str, int] = dict(DEFAULT_TIMETABLE if timetable is None else timetable)

    # Attendance
    def append_attendance(self, event: AttendanceEvent) -> AttendanceEvent:
        with self._lock:
            self._attendance.append(event)
        return event

    def list_attendance(self) -> List[AttendanceEvent]:
        with self._lock:
            return [e.model_copy() for e in self._attendance]

    def attendance_report(self, teacher_id: str = REPORT_TEACHER_ID) -> AttendanceReport:
        with self._lock:
            starts = ends = 0
            for e in self._attendance:
                if e.teacher_id != teacher_id:
                    continue
                if e.type == "start":
                    starts += 1
                elif e.type == "end":
                    ends += 1
            # one completed start/end pair counts as two hours
            worked = (starts + ends) // 2 * 2
            expected = self._hours_for(teacher_id)
            return AttendanceReport(
                teacher_id=teacher_id,
                expected_hours=expected,
                worked_hours=worked,
                missing_hours=max(0, expected - worked),
                events_recorded=len(self._attendance),
            )

    # Files
    def list_files(self, class_id: str) -> List[SharedFile]:
        with self._lock:
            return [f.model_copy() for f in self._files_by_class.get(class_id, [])]

    def append_file(self, class_id: str, file: SharedFile) -> SharedFile:
        with self._lock:
            self._files_by_class.setdefault(class_id, []).append(file)
        return file

    # Announcements
    def prepend_announcement(self, announcement: Announcement) -> Announcement:
        with self._lock:
            self._announcements.insert(0, announcement)
        return announcement

    def list_announcements(self) -> List[Announcement]:
        with self._lock:
            return [a.model_copy() for a in self._announcements]

    # Timetable
    def expected_hours(self, teacher_id: str) -> int:
        with self._lock:
            return self._hours_for(teacher_id)

    def _hours_for(self, teacher_id: str) -> int:
        # caller holds the lock
        return self._timetable.get(teacher_id, 0)
