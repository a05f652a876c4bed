from pydantic import BaseModel, Field, StrictFloat, StrictInt
from datetime import datetime
from typing import Union


class AmountRequest(BaseModel):
    # JSON numbers only; sign and range checks belong to the account,
    # which reports INVALID_AMOUNT.
    amount: Union[StrictInt, StrictFloat] = Field(..., description="Amount to deposit or withdraw")


class AccountResponse(BaseModel):
    id: int = Field(..., description="Account identifier")
    balance: float = Field(..., description="Account balance after the operation")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of accounts in system")
