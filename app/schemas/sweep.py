from pydantic import BaseModel


class SweepResult(BaseModel):
    holds_expired: int
    offers_expired: int
    reallocated: int
    failures: int

    class Config:
        from_attributes = True
