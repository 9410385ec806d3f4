from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime


class PlayerProfile(SQLModel, table=True):
    # document path: artifacts/<app_id>/public/data/chosung_rankings/<user_id>
    path: str = Field(primary_key=True)
    namespace: str = Field(index=True)
    user_id: str = Field(index=True)
    nickname: str = ""
    high_score: int = Field(default=0, index=True)
    last_updated: Optional[datetime] = None
