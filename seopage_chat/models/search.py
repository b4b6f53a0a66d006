from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class SearchOutcome(str, Enum):
    SUCCESS = "success"
    TASK_IN_PROGRESS = "task_in_progress"
    SUBSCRIPTION_REQUIRED = "subscription_required"
    NETWORK_ERROR = "network_error"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


# Backend business codes returned in the response body
CODE_SUCCESS = 200
CODE_NETWORK_ERROR = 1058
CODE_TASK_IN_PROGRESS = 1075
CODE_SUBSCRIPTION_REQUIRED = 13002


class CompetitorSearchResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool
    outcome: SearchOutcome
    competitors: Tuple[str, ...] = ()
    website_id: Optional[str] = Field(default=None, alias="websiteId")
    error_code: Optional[int] = Field(default=None, alias="errorCode")
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.outcome is SearchOutcome.NETWORK_ERROR
