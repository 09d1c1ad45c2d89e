import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from payconfirm.utils.time import now_ms

# Confirmation states
PENDING = "pending"
PROCESSING = "processing"
SUCCESS = "success"
FAILED = "failed"
CANCELLED = "cancelled"

ALL_STATES = (PENDING, PROCESSING, SUCCESS, FAILED, CANCELLED)
TERMINAL_STATES = frozenset({SUCCESS, FAILED, CANCELLED})

# Why a session ended up in FAILED
FAILURE_PRECONDITION = "precondition"
FAILURE_GATEWAY = "gateway"
FAILURE_TIMEOUT = "timeout"

# Probe sources
SOURCE_PRIMARY = "primary"
SOURCE_FALLBACK = "fallback"
SOURCE_NONE = "none"

# User-facing messages
MSG_AWAITING_PIN = "Awaiting PIN authorization on your device"
MSG_NO_TRANSACTION = "No transaction ID available."
MSG_TIMEOUT = "Payment verification timeout. Please check your M-Pesa statement."
MSG_RETRYING = "Retrying payment verification..."
MSG_CANCELLED = "Payment verification cancelled."
MSG_SUCCESS = "Payment completed successfully"
MSG_STILL_PROCESSING = "Payment is still being processed"
MSG_VERIFYING = "Verifying payment status..."
MSG_UNABLE_TO_VERIFY = "Unable to verify payment status right now"

STEP_TITLES = ("Initiated", "Authorization", "Processing", "Confirmed")


@dataclass(frozen=True)
class ProbeResult:
    status: str  # pending | success | failed
    message: str
    raw: Optional[Any] = None
    source: str = SOURCE_NONE


@dataclass
class ConfirmationSession:
    transactionRef: Optional[str] = None
    orderRef: Optional[str] = None

    # Display-only
    amount: float = 0.0
    payerPhone: str = ""

    state: str = PENDING
    attemptCount: int = 0
    maxAttempts: int = 30
    intervalMs: int = 6000
    message: str = ""

    sessionId: str = field(default_factory=lambda: uuid.uuid4().hex)
    failureKind: Optional[str] = None
    createdAtMs: int = field(default_factory=now_ms)
    updatedAtMs: int = field(default_factory=now_ms)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class ConfirmationView:
    """Read-only progress snapshot handed to the presentation layer."""
    sessionId: str
    state: str
    message: str
    attemptCount: int
    maxAttempts: int
    remainingAttempts: int
    remainingSeconds: int
    progress: int
    steps: List[Dict[str, Any]]
    canRetry: bool
    canCancel: bool
    failureKind: Optional[str]
    transactionRef: Optional[str]
    orderRef: Optional[str]
    amount: float
    payerPhone: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.sessionId,
            "state": self.state,
            "message": self.message,
            "attemptCount": self.attemptCount,
            "maxAttempts": self.maxAttempts,
            "remainingAttempts": self.remainingAttempts,
            "remainingSeconds": self.remainingSeconds,
            "progress": self.progress,
            "steps": [dict(s) for s in self.steps],
            "canRetry": self.canRetry,
            "canCancel": self.canCancel,
            "failureKind": self.failureKind,
            "transactionRef": self.transactionRef,
            "orderRef": self.orderRef,
            "amount": self.amount,
            "payerPhone": self.payerPhone,
        }
