from typing import List, Literal, Optional
from pydantic import BaseModel

State = Literal["pending", "processing", "success", "failed", "cancelled"]

class OpenConfirmationRequest(BaseModel):
    # Missing transactionRef is accepted: the session fails with "nothing to verify".
    transactionRef: Optional[str] = None
    orderRef: Optional[str] = None
    amount: float = 0.0
    phone: str = ""

class StkCheckoutRequest(BaseModel):
    phone: str
    amount: float
    orderRef: str

class Step(BaseModel):
    id: int
    title: str
    completed: bool
    active: bool

class ConfirmationViewResponse(BaseModel):
    sessionId: str
    state: State
    message: str
    attemptCount: int
    maxAttempts: int
    remainingAttempts: int
    remainingSeconds: int
    progress: int
    steps: List[Step]
    canRetry: bool
    canCancel: bool
    failureKind: Optional[str] = None
    transactionRef: Optional[str] = None
    orderRef: Optional[str] = None
    amount: float = 0.0
    payerPhone: str = ""
