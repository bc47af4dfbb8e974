from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from birthbot.services.errors import BotError
from birthbot.services.validators import validate_dob, validate_text


class ApplicationSubmission(BaseModel):
    """Birth certificate form posted by the web form (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    child_name: str = Field(alias="childName")
    dob: str
    gender: str | None = None
    father_name: str | None = Field(default=None, alias="fatherName")
    mother_name: str | None = Field(default=None, alias="motherName")
    place_of_birth: str | None = Field(default=None, alias="placeOfBirth")
    hospital_name: str | None = Field(default=None, alias="hospitalName")
    address: str | None = None
    district: str | None = None
    phone_number: str | None = Field(default=None, alias="phoneNumber")

    @field_validator("child_name")
    @classmethod
    def _check_child_name(cls, v: str) -> str:
        try:
            return validate_text(v, "child_name")
        except BotError as e:
            raise ValueError(e.message) from e

    @field_validator("dob")
    @classmethod
    def _check_dob(cls, v: str) -> str:
        try:
            return validate_dob(v)
        except BotError as e:
            raise ValueError(e.message) from e

    def record_fields(self) -> dict[str, str]:
        """All submitted values (extra form fields included) as strings."""
        data = self.model_dump(exclude_none=True, exclude={"phone_number"})
        return {key: str(value) for key, value in data.items()}


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    application_id: str = Field(alias="applicationId")
    message: str


class ApplicationRecordResponse(BaseModel):
    record_id: str
    conversant_id: str
    channel: str
    status: str
    submitted_at: datetime
    fields: dict[str, str]


class ApplicationListResponse(BaseModel):
    total: int
    applications: list[ApplicationRecordResponse]
