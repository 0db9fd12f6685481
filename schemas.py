"""
Records for the classroom backend.

Every model is a flat value record. Field aliases carry the camelCase
wire names; models are always dumped by alias.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal
from datetime import datetime


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class User(WireModel):
    id: str
    email: str = ""
    role: Literal["student", "teacher", "admin"]
    classes: List[str] = Field(default_factory=list)


class AttendanceEvent(WireModel):
    teacher_id: str = Field("", alias="teacherId")
    type: Literal["start", "end"]
    at: datetime


class SharedFile(WireModel):
    id: str
    class_id: str = Field(..., alias="classId")
    teacher_id: str = Field("", alias="teacherId")
    name: str
    url: str = ""
    at: datetime


class Announcement(WireModel):
    id: str
    message: str
    at: datetime


class AttendanceReport(WireModel):
    teacher_id: str = Field(..., alias="teacherId")
    expected_hours: int = Field(..., alias="expectedHours")
    worked_hours: int = Field(..., alias="workedHours")
    missing_hours: int = Field(..., alias="missingHours")
    events_recorded: int = Field(..., alias="eventsRecorded")


class Event(WireModel):
    """Push frame body: one committed change."""

    type: Literal["attendance", "file_uploaded", "announcement"]
    payload: dict
