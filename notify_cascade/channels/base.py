"""
Channel adapter interface - abstracts provider calls for easier testing

Adapters never raise for provider failures. They return a DeliveryResult
that says whether the failure is transient (worth retrying) or permanent,
and the dispatcher decides what to do with it.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

logger = logging.getLogger("channel-adapter")


@dataclass
class EmailContent:
    """Rendered email"""
    subject: str
    html: str
    text: Optional[str] = None


@dataclass
class DeliveryResult:
    """Result of a send attempt"""
    success: bool
    delivery_id: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False
    # Legs of a multi-recipient send that went out before the failure
    delivered: List[str] = field(default_factory=list)

    @classmethod
    def sent(cls, delivery_id: Optional[str]) -> "DeliveryResult":
        return cls(success=True, delivery_id=delivery_id)

    @classmethod
    def transient(cls, error_message: str) -> "DeliveryResult":
        return cls(success=False, error_message=error_message, retryable=True)

    @classmethod
    def permanent(cls, error_message: str) -> "DeliveryResult":
        return cls(success=False, error_message=error_message, retryable=False)


class ChannelAdapter(ABC):
    """Abstract interface for one delivery channel"""

    name = "channel"

    @abstractmethod
    def send(self, recipient: str, content: Any) -> DeliveryResult:
        """Deliver content to a recipient (phone number or email address)"""
        pass


class MockChannelAdapter(ChannelAdapter):
    """Mock implementation for testing and dry runs"""

    def __init__(self, name: str = "mock"):
        self.name = name
        self.sent: List[dict] = []
        self.should_fail = False
        self.failure_error = None
        self.failure_retryable = True
        self.fail_times = None  # Fail only this many sends when set

    def send(self, recipient: str, content: Any) -> DeliveryResult:
        """Record the send, or fail as configured"""
        if self.should_fail and (self.fail_times is None or self.fail_times > 0):
            if self.fail_times is not None:
                self.fail_times -= 1
            error = self.failure_error or f"Mock {self.name} failure"
            if self.failure_retryable:
                return DeliveryResult.transient(error)
            return DeliveryResult.permanent(error)

        delivery_id = f"mock-{self.name}-{len(self.sent) + 1}"
        self.sent.append({
            'id': delivery_id,
            'recipient': recipient,
            'content': content
        })
        logger.info(f"[DRY RUN] {self.name} to {recipient}: {delivery_id}")
        return DeliveryResult.sent(delivery_id)

    def reset(self):
        """Reset mock state"""
        self.sent.clear()
        self.should_fail = False
        self.failure_error = None
        self.failure_retryable = True
        self.fail_times = None
