"""Import all models so SQLModel.metadata picks them up."""

from chatmeter.models.aggregation import AggregationCheckpoint, AggregationStatus
from chatmeter.models.chat import Chat, ChatRead
from chatmeter.models.invoice import Invoice, InvoiceRead, InvoiceStatus
from chatmeter.models.message import Message, MessageRead, MessageRole
from chatmeter.models.scheduled_task import ScheduledTask, TaskState
from chatmeter.models.usage_event import UsageEvent

__all__ = [
    "AggregationCheckpoint",
    "AggregationStatus",
    "Chat",
    "ChatRead",
    "Invoice",
    "InvoiceRead",
    "InvoiceStatus",
    "Message",
    "MessageRead",
    "MessageRole",
    "ScheduledTask",
    "TaskState",
    "UsageEvent",
]
