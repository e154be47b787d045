from pydantic import BaseModel, ConfigDict, Field


class JobErrorOut(BaseModel):
    id: str
    error: str


class JobResultOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    errors: list[JobErrorOut] | None = None
    message: str


class CompletedPostsOut(JobResultOut):
    completed_count: int = Field(alias="completedCount")


class ApprovedPostsOut(JobResultOut):
    approved_count: int = Field(alias="approvedCount")


class UnsuspendedUsersOut(JobResultOut):
    unsuspended_count: int = Field(alias="unsuspendedCount")


class InternalErrorOut(BaseModel):
    code: str = "internal"
    message: str
    details: str | None = None
