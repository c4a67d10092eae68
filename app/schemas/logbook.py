"""Logbook schemas."""

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils.constants import MAX_WEEKLY_HOURS, MIN_WEEK_NUMBER


class LogbookSummary(BaseModel):
    """Structured AI summary stored on the logbook."""

    summary: str = Field(min_length=1)
    keySkillsDemonstrated: List[str] = Field(default_factory=list)
    learningOutcomes: List[str] = Field(default_factory=list)
    hoursVerification: bool
    suggestedImprovements: Union[str, List[str]] = ""
    estimatedProductivity: Literal["high", "medium", "low"]

    @field_validator("estimatedProductivity", mode="before")
    @classmethod
    def normalize_productivity(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class LogbookSubmission(BaseModel):
    """Student input for a weekly logbook."""

    model_config = ConfigDict(populate_by_name=True)

    internship_id: str = Field(alias="internshipId")
    week_number: int = Field(alias="weekNumber", ge=MIN_WEEK_NUMBER)
    hours_worked: float = Field(alias="hoursWorked", ge=0, le=MAX_WEEKLY_HOURS)
    activities: str = Field(min_length=1)
    tasks_completed: List[str] = Field(default_factory=list, alias="tasksCompleted")
    skills_used: List[str] = Field(default_factory=list, alias="skillsUsed")
    challenges: Optional[str] = None
    learnings: Optional[str] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    draft: bool = False
