from __future__ import annotations

"""Fair round-robin assignment of escalated clients to human sales agents."""

import logging
import threading
from typing import List, Optional

from .models import AgentRecord, AssignmentRecord
from .store import CrmStore

logger = logging.getLogger("salesdesk.router")


class AssignmentRouter:
    """Round-robin over the active roster with sticky client -> agent routing."""

    def __init__(self, store: CrmStore) -> None:
        """Purpose: Bind the router to its store and recover the rotation cursor.
        Inputs/Outputs: Input is the CrmStore; no return value.
        Side Effects / State: Calls recover(), which reads agents and rotation state.
        Dependencies: CrmStore agent/assignment/rotation operations.
        Failure Modes: An empty roster leaves the cursor at -1.
        If Removed: Escalated clients have nobody to talk to.
        Testing Notes: Seed agents and assignments in a store, build a router, check cursor.
        """
        # Recover the cursor before the first assignment.
        self._store = store
        self._lock = threading.Lock()
        self._cursor = -1
        self.recover()

    @property
    def cursor(self) -> int:
        return self._cursor

    def recover(self) -> int:
        """Purpose: Restore the rotation position after a restart.
        Inputs/Outputs: No inputs; returns the recovered cursor.
        Side Effects / State: Sets self._cursor.
        Dependencies: Uses the persisted last-assigned agent id, else assignment counts.
        Failure Modes: A persisted id missing from the roster falls back to the counts.
        If Removed: Every restart hands the next client to the first agent again.
        Testing Notes: Counts [2, 2, 1] recover to index 1 so the next pick is index 2.
        """
        # Prefer the persisted last agent over the count heuristic.
        with self._lock:
            roster = self._store.list_active_agents()
            self._cursor = self._recover_cursor(roster)
            logger.info("rotation recovered cursor=%s roster=%s", self._cursor, len(roster))
            return self._cursor

    def _recover_cursor(self, roster: List[AgentRecord]) -> int:
        if not roster:
            return -1
        last_agent_id = self._store.get_rotation_state().last_agent_id
        if last_agent_id is not None:
            for position, agent in enumerate(roster):
                if agent.id == last_agent_id:
                    return position
        # Ties go to the later index so the agent after them is picked next.
        cursor = -1
        best = -1
        for position, agent in enumerate(roster):
            if agent.assignments_count >= best:
                best = agent.assignments_count
                cursor = position
        return cursor

    def assign(self, client_id: str) -> Optional[AssignmentRecord]:
        """Purpose: Return the client's agent, picking the next one in rotation if needed.
        Inputs/Outputs: Input is client_id; output is the active AssignmentRecord or None
            when no agent is active.
        Side Effects / State: Advances the cursor, creates an assignment, and persists the
            last-assigned agent id, all under the router lock.
        Dependencies: CrmStore.get_active_assignment/create_assignment/set_rotation_state.
        Failure Modes: Store IO errors propagate.
        If Removed: Purchase and human-request escalations cannot be routed.
        Testing Notes: A second call for the same client returns the same agent and leaves the
            cursor where it was.
        """
        # Sticky check, rotation, and persistence share one lock hold.
        with self._lock:
            existing = self._store.get_active_assignment(client_id)
            if existing is not None:
                logger.info("assignment sticky client=%s agent=%s", client_id, existing.agent_name)
                return existing

            roster = self._store.list_active_agents()
            if not roster:
                logger.warning("assignment skipped client=%s reason=no_active_agents", client_id)
                return None

            self._cursor = (self._cursor + 1) % len(roster)
            agent = roster[self._cursor]
            assignment = self._store.create_assignment(client_id, agent.id)
            self._store.set_rotation_state(agent.id)
            logger.info(
                "assignment new client=%s agent=%s cursor=%s roster=%s",
                client_id,
                agent.name,
                self._cursor,
                len(roster),
            )
            return assignment

    def close(self, client_id: str) -> Optional[AssignmentRecord]:
        with self._lock:
            closed = self._store.close_assignment(client_id)
        if closed is not None:
            logger.info("assignment closed client=%s agent=%s", client_id, closed.agent_name)
        return closed
