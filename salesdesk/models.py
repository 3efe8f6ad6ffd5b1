from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class InboundMessage(BaseModel):
    """Inbound chat message handed over by the transport layer."""
    sender_id: str
    text: str = ""
    display_name: str = ""
    timestamp: Optional[float] = None


class OutboundMessage(BaseModel):
    """Message the transport layer must deliver to someone other than the sender."""
    recipient: str
    text: str


class ClientRecord(BaseModel):
    """CRM record for one chat client."""
    client_id: str
    name: str = ""
    notes: str = ""
    status: str = "new"
    memory: str = ""
    interaction_count: int = 0
    created_at: float
    updated_at: float


class StoredMessage(BaseModel):
    """Persisted conversation message."""
    client_id: str
    role: str
    content: str
    timestamp: float


class AgentRecord(BaseModel):
    """Human sales agent in the rotation roster."""
    id: int
    name: str
    contact_handle: str
    is_active: bool = True
    assignments_count: int = 0
    created_at: float


class AssignmentRecord(BaseModel):
    """Client -> agent assignment; at most one active per client."""
    id: int
    client_id: str
    agent_id: int
    agent_name: str
    agent_contact: str
    status: str = "active"
    assigned_at: float
    completed_at: Optional[float] = None


class RotationState(BaseModel):
    """Persisted rotation position: the agent that received the last new assignment."""
    last_agent_id: Optional[int] = None
    updated_at: Optional[float] = None


class AgentLoad(BaseModel):
    name: str
    contact_handle: str
    assignments_count: int
    active_now: int
    today: int = 0


class StoreStats(BaseModel):
    """Aggregate counters for the admin surface."""
    total_clients: int
    new_clients: int
    active_assignments: int
    total_messages: int
    agents: List[AgentLoad] = Field(default_factory=list)


class ActivityReport(BaseModel):
    """Day, week, and total activity counters for the owner report."""
    clients_today: int
    messages_today: int
    handoffs_today: int
    clients_this_week: int
    total_clients: int
    new_clients: int
    assigned_clients: int
    total_messages: int
    agents: List[AgentLoad] = Field(default_factory=list)
    unattended: List[ClientRecord] = Field(default_factory=list)


class MessageReply(BaseModel):
    """Response payload returned by the message API."""
    sender_id: str
    classification: Optional[str] = None
    reply_text: Optional[str] = None
    assignment: Optional[AssignmentRecord] = None
    notifications: List[OutboundMessage] = Field(default_factory=list)


class SearchHit(BaseModel):
    title: str
    category: str
    score: int
    available: bool
    url: str = ""
    prices: Dict[str, str] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    """Search debug payload: what the ranker saw and why it ranked items."""
    keywords: List[str]
    strategy: str
    total_matched: int
    items: List[SearchHit]
