from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class TicketResponse(BaseModel):
    ticket: str
    ttl: int


class QueuedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "queued"
    job_id: str = Field(serialization_alias="jobId")


class ClaimCheck(BaseModel):
    """Pointer message published to the queue; the rendered HTML stays in storage."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(min_length=1, alias="jobId")
    template: str = Field(min_length=1)
    payload_location: str = Field(
        min_length=1,
        alias="blobUrl",
        validation_alias=AliasChoices("blobUrl", "payloadLocation"),
    )
    compressed: bool = False
    owner_id: str = Field(
        min_length=1,
        alias="userId",
        validation_alias=AliasChoices("userId", "ownerId"),
    )
    file_name: Optional[str] = Field(default=None, alias="fileName")

    @model_validator(mode="after")
    def default_file_name(self):
        if not self.file_name:
            self.file_name = f"{self.template}.pdf"
        return self

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True)
