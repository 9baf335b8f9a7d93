from pydantic import BaseModel


class ReconcileTriggerOut(BaseModel):
    message: str
