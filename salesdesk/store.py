from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .models import (
    ActivityReport,
    AgentLoad,
    AgentRecord,
    AssignmentRecord,
    ClientRecord,
    RotationState,
    StoredMessage,
    StoreStats,
)

logger = logging.getLogger("salesdesk.store")

CLIENT_FIELDS = ("name", "notes", "status", "memory")


class CrmStore:
    """CRM storage for clients, conversations, agents, assignments, and rotation state."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Purpose: Initialize the store and hydrate from disk if available.
        Inputs/Outputs: Input is an optional JSON file path (None keeps everything in memory).
        Side Effects / State: Loads clients/messages/agents/assignments into memory caches.
        Dependencies: Calls _load; relies on the pydantic record models.
        Failure Modes: A corrupt file is logged and the store starts empty.
        If Removed: Client history, agent counts, and assignments are lost on restart.
        Testing Notes: Write through one instance, reopen the path, and compare records.
        """
        # Initialize caches before hydrating from disk.
        self._path = path
        self._lock = threading.RLock()
        self._clients: Dict[str, ClientRecord] = {}
        self._messages: Dict[str, List[StoredMessage]] = {}
        self._agents: Dict[int, AgentRecord] = {}
        self._assignments: List[AssignmentRecord] = []
        self._rotation = RotationState()
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted CRM data from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates every cache.
        Dependencies: Uses json.loads and pydantic validation.
        Failure Modes: Missing file leaves empty caches; JSONDecodeError is logged.
        If Removed: Previously stored data is never restored on startup.
        Testing Notes: Corrupt JSON should not crash; valid JSON should hydrate caches.
        """
        # Hydrate caches from the JSON snapshot.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.error("store load failed path=%s error=%s", self._path, exc)
            return
        for client_id, client in (data.get("clients") or {}).items():
            self._clients[client_id] = ClientRecord(**client)
        for client_id, messages in (data.get("messages") or {}).items():
            self._messages[client_id] = [StoredMessage(**msg) for msg in messages]
        for agent in data.get("agents") or []:
            record = AgentRecord(**agent)
            self._agents[record.id] = record
        self._assignments = [AssignmentRecord(**row) for row in data.get("assignments") or []]
        if isinstance(data.get("rotation"), dict):
            self._rotation = RotationState(**data["rotation"])

    def _persist(self) -> None:
        """Purpose: Persist in-memory caches to disk.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Writes a temp file and atomically replaces the target.
        Dependencies: Uses json.dumps and Path.replace.
        Failure Modes: IO errors raise to the caller.
        If Removed: Nothing survives a restart.
        Testing Notes: Ensure the file is created and JSON structure matches the models.
        """
        # Serialize all caches and replace the file atomically.
        if not self._path:
            return
        payload = {
            "clients": {client_id: record.model_dump() for client_id, record in self._clients.items()},
            "messages": {
                client_id: [msg.model_dump() for msg in messages] for client_id, messages in self._messages.items()
            },
            "agents": [agent.model_dump() for agent in sorted(self._agents.values(), key=lambda a: a.id)],
            "assignments": [row.model_dump() for row in self._assignments],
            "rotation": self._rotation.model_dump(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    # Clients

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        return self._clients.get(client_id)

    def upsert_client(self, client_id: str, **fields: str) -> ClientRecord:
        """Purpose: Create a client or update the given fields of an existing one.
        Inputs/Outputs: Inputs are client_id and any of name/notes/status/memory; returns the record.
        Side Effects / State: Mutates the client cache and persists.
        Dependencies: Uses CLIENT_FIELDS to reject unknown field names.
        Failure Modes: Unknown fields raise ValueError; empty values are ignored on update.
        If Removed: New chat senders are never registered in the CRM.
        Testing Notes: Updating with name="" keeps the stored name.
        """
        # Validate field names before taking the lock.
        unknown = set(fields) - set(CLIENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown client fields: {sorted(unknown)}")
        with self._lock:
            now = time.time()
            record = self._clients.get(client_id)
            if record is None:
                record = ClientRecord(
                    client_id=client_id,
                    name=fields.get("name") or "",
                    notes=fields.get("notes") or "",
                    status=fields.get("status") or "new",
                    memory=fields.get("memory") or "",
                    created_at=now,
                    updated_at=now,
                )
                self._clients[client_id] = record
                logger.info("client registered client=%s name=%r", client_id, record.name)
            else:
                changes = {key: value for key, value in fields.items() if value}
                if changes:
                    record = record.model_copy(update={**changes, "updated_at": now})
                    self._clients[client_id] = record
            self._persist()
            return record

    def list_clients(self) -> List[ClientRecord]:
        return sorted(self._clients.values(), key=lambda c: c.updated_at, reverse=True)

    def reset_client(self, client_id: str) -> Optional[ClientRecord]:
        """Clear history and memory and set the client back to "new"."""
        with self._lock:
            record = self._clients.get(client_id)
            if record is None:
                return None
            self._messages.pop(client_id, None)
            record = record.model_copy(
                update={"status": "new", "memory": "", "interaction_count": 0, "updated_at": time.time()}
            )
            self._clients[client_id] = record
            self._persist()
            return record

    # Conversations

    def append_message(self, client_id: str, role: str, content: str) -> StoredMessage:
        with self._lock:
            now = time.time()
            message = StoredMessage(client_id=client_id, role=role, content=content, timestamp=now)
            self._messages.setdefault(client_id, []).append(message)
            record = self._clients.get(client_id)
            if record is not None and role == "user":
                self._clients[client_id] = record.model_copy(
                    update={"interaction_count": record.interaction_count + 1, "updated_at": now}
                )
            self._persist()
            return message

    def get_recent_messages(self, client_id: str, limit: int = 10) -> List[StoredMessage]:
        """Return the last `limit` messages in chronological order."""
        messages = self._messages.get(client_id, [])
        if limit <= 0:
            return []
        return list(messages[-limit:])

    def count_messages(self, client_id: str, roles: Optional[Tuple[str, ...]] = None) -> int:
        messages = self._messages.get(client_id, [])
        if roles is None:
            return len(messages)
        return sum(1 for message in messages if message.role in roles)

    def clear_conversation(self, client_id: str) -> None:
        with self._lock:
            self._messages.pop(client_id, None)
            self._persist()

    # Agents

    def upsert_agent(self, name: str, contact_handle: str) -> AgentRecord:
        """Purpose: Register an agent or reactivate/rename an existing one by contact handle.
        Inputs/Outputs: Inputs are name and contact handle; returns the AgentRecord.
        Side Effects / State: Mutates the agent cache and persists.
        Dependencies: Uses get_agent_by_contact; ids are assigned in insertion order.
        Failure Modes: None expected.
        If Removed: The configured roster never reaches the router.
        Testing Notes: Re-registering keeps id and assignments_count.
        """
        # Match on contact handle so renames keep the same id.
        with self._lock:
            existing = self.get_agent_by_contact(contact_handle)
            if existing is not None:
                record = existing.model_copy(update={"name": name, "is_active": True})
            else:
                next_id = max(self._agents, default=0) + 1
                record = AgentRecord(id=next_id, name=name, contact_handle=contact_handle, created_at=time.time())
                logger.info("agent registered id=%s name=%s", record.id, record.name)
            self._agents[record.id] = record
            self._persist()
            return record

    def set_agent_active(self, agent_id: int, active: bool) -> Optional[AgentRecord]:
        with self._lock:
            record = self._agents.get(agent_id)
            if record is None:
                return None
            record = record.model_copy(update={"is_active": active})
            self._agents[agent_id] = record
            self._persist()
            return record

    def get_agent(self, agent_id: int) -> Optional[AgentRecord]:
        return self._agents.get(agent_id)

    def get_agent_by_contact(self, contact_handle: str) -> Optional[AgentRecord]:
        for agent in self._agents.values():
            if agent.contact_handle == contact_handle:
                return agent
        return None

    def list_active_agents(self) -> List[AgentRecord]:
        return [agent for agent in sorted(self._agents.values(), key=lambda a: a.id) if agent.is_active]

    # Assignments

    def get_active_assignment(self, client_id: str) -> Optional[AssignmentRecord]:
        for row in reversed(self._assignments):
            if row.client_id == client_id and row.status == "active":
                return row
        return None

    def create_assignment(self, client_id: str, agent_id: int) -> AssignmentRecord:
        """Purpose: Assign a client to an agent, completing any prior active assignment.
        Inputs/Outputs: Inputs are client_id and agent_id; returns the new active assignment.
        Side Effects / State: Completes old rows, appends a new row, increments the agent count,
            and persists, all under one lock hold.
        Dependencies: Uses _complete_active and the agent cache.
        Failure Modes: Unknown agent ids raise KeyError before anything changes.
        If Removed: Escalations cannot be recorded and the one-active-per-client rule breaks.
        Testing Notes: Two calls for one client leave exactly one active row.
        """
        # Complete prior rows and count the new one under one lock hold.
        with self._lock:
            agent = self._agents[agent_id]
            now = time.time()
            self._complete_active(client_id, now)
            row = AssignmentRecord(
                id=len(self._assignments) + 1,
                client_id=client_id,
                agent_id=agent.id,
                agent_name=agent.name,
                agent_contact=agent.contact_handle,
                assigned_at=now,
            )
            self._assignments.append(row)
            self._agents[agent_id] = agent.model_copy(update={"assignments_count": agent.assignments_count + 1})
            self._persist()
            logger.info("assignment created client=%s agent_id=%s", client_id, agent_id)
            return row

    def close_assignment(self, client_id: str) -> Optional[AssignmentRecord]:
        with self._lock:
            closed = self._complete_active(client_id, time.time())
            if closed:
                self._persist()
                return closed[-1]
            return None

    def list_assignments(self, status: Optional[str] = None) -> List[AssignmentRecord]:
        return [row for row in self._assignments if status is None or row.status == status]

    def _complete_active(self, client_id: str, now: float) -> List[AssignmentRecord]:
        closed: List[AssignmentRecord] = []
        for position, row in enumerate(self._assignments):
            if row.client_id == client_id and row.status == "active":
                done = row.model_copy(update={"status": "completed", "completed_at": now})
                self._assignments[position] = done
                closed.append(done)
        return closed

    # Rotation

    def get_rotation_state(self) -> RotationState:
        return self._rotation

    def set_rotation_state(self, last_agent_id: int) -> None:
        with self._lock:
            self._rotation = RotationState(last_agent_id=last_agent_id, updated_at=time.time())
            self._persist()

    # Stats

    def stats(self) -> StoreStats:
        active_by_agent = self._count_assignments_by_agent(lambda row: row.status == "active")
        return StoreStats(
            total_clients=len(self._clients),
            new_clients=sum(1 for c in self._clients.values() if c.status == "new"),
            active_assignments=sum(active_by_agent.values()),
            total_messages=sum(len(messages) for messages in self._messages.values()),
            agents=[
                AgentLoad(
                    name=agent.name,
                    contact_handle=agent.contact_handle,
                    assignments_count=agent.assignments_count,
                    active_now=active_by_agent.get(agent.id, 0),
                )
                for agent in self.list_active_agents()
            ],
        )

    def activity_report(self, day_start: float, week_start: float, unattended_limit: int = 10) -> ActivityReport:
        """Purpose: Summarize activity since the start of the day and of the week.
        Inputs/Outputs: Inputs are epoch cut-offs for "today" and "this week" and the size of the
            unattended list; returns an ActivityReport.
        Side Effects / State: None; reads the caches.
        Dependencies: Uses created_at on clients, timestamp on messages, and assigned_at on
            assignments.
        Failure Modes: None expected.
        If Removed: The owner report has no day or week figures.
        Testing Notes: Clients still "new" with at least one message are listed as unattended,
            most recent first.
        """
        # Count everything against the cut-offs in one pass per collection.
        with self._lock:
            clients = list(self._clients.values())
            messages = [message for history in self._messages.values() for message in history]
            active_by_agent = self._count_assignments_by_agent(lambda row: row.status == "active")
            today_by_agent = self._count_assignments_by_agent(lambda row: row.assigned_at >= day_start)
            unattended = sorted(
                (client for client in clients if client.status == "new" and client.interaction_count > 0),
                key=lambda client: client.updated_at,
                reverse=True,
            )
            return ActivityReport(
                clients_today=sum(1 for client in clients if client.created_at >= day_start),
                messages_today=sum(1 for message in messages if message.timestamp >= day_start),
                handoffs_today=sum(today_by_agent.values()),
                clients_this_week=sum(1 for client in clients if client.created_at >= week_start),
                total_clients=len(clients),
                new_clients=sum(1 for client in clients if client.status == "new"),
                assigned_clients=sum(1 for client in clients if client.status == "assigned"),
                total_messages=len(messages),
                agents=[
                    AgentLoad(
                        name=agent.name,
                        contact_handle=agent.contact_handle,
                        assignments_count=agent.assignments_count,
                        active_now=active_by_agent.get(agent.id, 0),
                        today=today_by_agent.get(agent.id, 0),
                    )
                    for agent in self.list_active_agents()
                ],
                unattended=unattended[: max(0, unattended_limit)],
            )

    def _count_assignments_by_agent(self, predicate: Callable[[AssignmentRecord], bool]) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for row in self._assignments:
            if predicate(row):
                counts[row.agent_id] = counts.get(row.agent_id, 0) + 1
        return counts
