"""Wire models shared by the server and the device client."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from pingo.overdue import coerce_interval_hours


class MemberConfig(BaseModel):
    interval: Optional[int] = None
    reminderTime: Optional[str] = None

    @field_validator("interval", mode="before")
    @classmethod
    def _loose_interval(cls, v):
        # older records stored whatever string the client sent
        if v is None or v == "":
            return None
        try:
            return int(str(v).strip())
        except ValueError:
            return None

    @property
    def interval_hours(self) -> int:
        return coerce_interval_hours(self.interval)


class MemberStatus(BaseModel):
    name: str
    lastCheckin: int = 0
    config: MemberConfig = Field(default_factory=MemberConfig)


class StatusResponse(BaseModel):
    adminPassword: str = ""
    students: List[MemberStatus] = Field(default_factory=list)

    def member(self, name: str) -> Optional[MemberStatus]:
        for m in self.students:
            if m.name == name:
                return m
        return None


class ResetResponse(BaseModel):
    success: bool
    debug_sent_code: str
