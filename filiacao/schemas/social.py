from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SocialDisconnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(min_length=1)
    proposal_id: UUID = Field(alias="proposalId")
    token: str = Field(min_length=1)
