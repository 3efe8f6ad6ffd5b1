from __future__ import annotations

"""Chat commands ("!stats", "!client <id>", ...) for the business owner and auditors."""

import logging
import time
from typing import Callable, Dict, List, Optional

from .models import AssignmentRecord
from .router import AssignmentRouter
from .store import CrmStore
from .utils import fold_text, truncate

logger = logging.getLogger("salesdesk.admin")

UNKNOWN_COMMAND_TEXT = "Comando no reconocido. Escribe !help para ver los comandos disponibles."
CLIENT_NOT_FOUND_TEXT = "No se encontro cliente con id {client_id}"
RECENT_CLIENTS_LIMIT = 10
CARD_MESSAGES_LIMIT = 5
REPORT_LIST_LIMIT = 10
LEAD_MEMORY_EXCERPT = 80
WEEK_SECONDS = 7 * 24 * 3600
# Profile words that mark a client as close to buying.
HOT_LEAD_MARKERS = ("comprar", "interesado", "listo", "precio")

HELP_TEXT = (
    "*Comandos de Admin:*\n\n"
    "*Informes:*\n"
    "  !stats - Estadisticas rapidas\n"
    "  !informe - Informe general (hoy, semana, sin atender)\n"
    "  !ventas - Pipeline de ventas\n\n"
    "*Clientes:*\n"
    "  !clients - Ultimos clientes\n"
    "  !client <id> - Ficha completa\n"
    "  !note <id> texto - Agregar nota\n"
    "  !reset <id> - Resetear cliente\n"
    "  !close <id> - Cerrar asignacion\n\n"
    "_Usa !help para ver esta ayuda_"
)

STATUS_ICONS = {"new": "[nuevo]", "assigned": "[asignado]", "closed": "[cerrado]"}


def _format_time(timestamp: Optional[float]) -> str:
    if not timestamp:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(timestamp))


def _start_of_day(now: float) -> float:
    # Local midnight of the day containing `now`.
    local = time.localtime(now)
    return time.mktime((local.tm_year, local.tm_mon, local.tm_mday, 0, 0, 0, 0, 0, -1))


def _is_hot_lead(memory: str) -> bool:
    folded = fold_text(memory or "")
    return any(marker in folded for marker in HOT_LEAD_MARKERS)


class AdminCommands:
    """Parse and run admin commands against the store and router."""

    def __init__(self, store: CrmStore, router: AssignmentRouter, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._router = router
        self._clock = clock
        self._handlers: Dict[str, Callable[[List[str]], str]] = {
            "!stats": self._stats,
            "!status": self._stats,
            "!informe": self._report,
            "!report": self._report,
            "!ventas": self._pipeline,
            "!pipeline": self._pipeline,
            "!clients": self._clients,
            "!clientes": self._clients,
            "!client": self._client_card,
            "!cliente": self._client_card,
            "!note": self._note,
            "!nota": self._note,
            "!reset": self._reset,
            "!close": self._close,
            "!cerrar": self._close,
            "!help": self._help,
            "!ayuda": self._help,
        }

    @staticmethod
    def is_command(text: str) -> bool:
        return (text or "").strip().startswith("!")

    def execute(self, text: str) -> str:
        """Purpose: Run one admin command and return the reply text.
        Inputs/Outputs: Input is the raw command ("!note 57300 llamar manana"); output is text.
        Side Effects / State: Note/reset/close commands mutate the store.
        Dependencies: Uses the handler table built in __init__.
        Failure Modes: Unknown commands return UNKNOWN_COMMAND_TEXT; missing arguments return
            usage text.
        If Removed: The owner has no way to inspect or correct CRM state from chat.
        Testing Notes: "!STATS" and "!stats" behave the same.
        """
        # Dispatch on the lowercased first token; the rest are arguments.
        parts = (text or "").strip().split()
        if not parts:
            return UNKNOWN_COMMAND_TEXT
        name = parts[0].lower()
        handler = self._handlers.get(name)
        logger.info("admin command=%s known=%s", name, handler is not None)
        if handler is None:
            return UNKNOWN_COMMAND_TEXT
        return handler(parts[1:])

    def close_client(self, client_id: str) -> Optional[AssignmentRecord]:
        closed = self._router.close(client_id)
        if closed is not None and self._store.get_client(client_id) is not None:
            self._store.upsert_client(client_id, status="closed")
        return closed

    def _help(self, args: List[str]) -> str:
        return HELP_TEXT

    def _stats(self, args: List[str]) -> str:
        stats = self._store.stats()
        lines = [
            "*Estadisticas*",
            "",
            f"Total clientes: {stats.total_clients}",
            f"Clientes nuevos: {stats.new_clients}",
            f"Asignaciones activas: {stats.active_assignments}",
            f"Total mensajes: {stats.total_messages}",
            "",
            "*Asesores:*",
        ]
        for agent in stats.agents:
            lines.append(f"  - {agent.name}: {agent.assignments_count} asignados ({agent.active_now} activos)")
        return "\n".join(lines)

    def _report(self, args: List[str]) -> str:
        """Purpose: Build the general owner report for today, the last week, and totals.
        Inputs/Outputs: Optional "ventas" argument redirects to the sales report; output is text.
        Side Effects / State: None; reads the store.
        Dependencies: CrmStore.activity_report and the injected clock.
        Failure Modes: None expected; an empty store reports zeros.
        If Removed: The owner cannot see daily volume or who is waiting for an answer.
        Testing Notes: A client with messages and status "new" shows under "Sin atender".
        """
        # "!informe ventas" is the long form of "!ventas".
        if args and args[0].lower() == "ventas":
            return self._pipeline(args[1:])
        now = self._clock()
        report = self._store.activity_report(
            day_start=_start_of_day(now),
            week_start=now - WEEK_SECONDS,
            unattended_limit=REPORT_LIST_LIMIT,
        )
        lines = [
            "*Informe general*",
            "",
            "*Hoy:*",
            f"  Clientes nuevos: {report.clients_today}",
            f"  Mensajes: {report.messages_today}",
            f"  Derivaciones: {report.handoffs_today}",
            "",
            "*Ultima semana:*",
            f"  Clientes nuevos: {report.clients_this_week}",
            "",
            "*Totales:*",
            f"  Clientes: {report.total_clients}",
            f"  Sin atender: {report.new_clients}",
            f"  Asignados: {report.assigned_clients}",
            f"  Mensajes: {report.total_messages}",
            "",
            "*Asesores:*",
        ]
        for agent in report.agents:
            lines.append(
                f"  - {agent.name}: {agent.today} hoy | {agent.active_now} activos | {agent.assignments_count} total"
            )
        if report.unattended:
            lines.append("")
            lines.append("*Clientes sin atender:*")
            for client in report.unattended:
                lines.append(
                    f"  - {client.name or 'Sin nombre'} ({client.client_id}) - {client.interaction_count} msgs"
                )
        return "\n".join(lines)

    def _pipeline(self, args: List[str]) -> str:
        clients = self._store.list_clients()
        counts: Dict[str, int] = {}
        for client in clients:
            counts[client.status] = counts.get(client.status, 0) + 1
        lines = ["*Pipeline de ventas*", ""]
        for status, count in sorted(counts.items()):
            lines.append(f"  {STATUS_ICONS.get(status, status)} {status}: {count} clientes")

        leads = [client for client in clients if _is_hot_lead(client.memory)][:REPORT_LIST_LIMIT]
        if leads:
            lines.append("")
            lines.append("*Leads calientes:*")
            for client in leads:
                excerpt = truncate(" ".join(client.memory.split()), LEAD_MEMORY_EXCERPT)
                lines.append(f"  - {client.name or 'Sin nombre'} ({client.client_id})")
                lines.append(f"    {excerpt}")

        pending = self._store.list_assignments(status="active")
        if pending:
            lines.append("")
            lines.append("*Asignados pendientes:*")
            for row in pending:
                client = self._store.get_client(row.client_id)
                name = client.name if client and client.name else "Sin nombre"
                lines.append(f"  - {name} -> {row.agent_name} ({_format_time(row.assigned_at)})")

        lines.append("")
        lines.append("*Carga por asesor:*")
        for agent in self._store.stats().agents:
            lines.append(f"  - {agent.name}: {agent.active_now} activos / {agent.assignments_count} total")
        return "\n".join(lines)

    def _clients(self, args: List[str]) -> str:
        clients = self._store.list_clients()
        if not clients:
            return "No hay clientes registrados aun."
        lines = ["*Ultimos clientes:*", ""]
        for position, client in enumerate(clients[:RECENT_CLIENTS_LIMIT], start=1):
            icon = STATUS_ICONS.get(client.status, client.status)
            lines.append(f"{position}. {icon} {client.name or 'Sin nombre'} - {client.client_id}")
        lines.append("")
        lines.append(f"_Total: {len(clients)} clientes_")
        return "\n".join(lines)

    def _client_card(self, args: List[str]) -> str:
        if not args:
            return "Uso: !client <id>"
        client_id = args[0]
        client = self._store.get_client(client_id)
        if client is None:
            return CLIENT_NOT_FOUND_TEXT.format(client_id=client_id)
        lines = [
            "*Ficha del Cliente*",
            "",
            f"Nombre: {client.name or 'Sin nombre'}",
            f"Id: {client.client_id}",
            f"Estado: {client.status}",
            f"Mensajes: {self._store.count_messages(client_id)}",
            f"Interacciones: {client.interaction_count}",
            f"Primer contacto: {_format_time(client.created_at)}",
            f"Ultima interaccion: {_format_time(client.updated_at)}",
        ]
        assignment = self._store.get_active_assignment(client_id)
        if assignment is not None:
            lines.append(f"Asignado a: {assignment.agent_name}")
        lines.append("")
        lines.append("*Memoria/Perfil:*")
        lines.append(client.memory or "_Sin datos aun_")
        if client.notes:
            lines.append("")
            lines.append("*Notas:*")
            lines.append(client.notes)
        lines.append("")
        lines.append("*Ultimos mensajes:*")
        recent = self._store.get_recent_messages(client_id, CARD_MESSAGES_LIMIT)
        if not recent:
            lines.append("_Sin mensajes_")
        for message in recent:
            lines.append(f"[{message.role}] {truncate(message.content, 100)}")
        return "\n".join(lines)

    def _note(self, args: List[str]) -> str:
        if len(args) < 2:
            return "Uso: !note <id> texto de la nota"
        client_id, note = args[0], " ".join(args[1:])
        client = self._store.get_client(client_id)
        if client is None:
            return CLIENT_NOT_FOUND_TEXT.format(client_id=client_id)
        entry = f"[{_format_time(time.time())}] {note}"
        notes = f"{client.notes}\n{entry}" if client.notes else entry
        self._store.upsert_client(client_id, notes=notes)
        return f"Nota agregada a {client.name or client_id}:\n\"{note}\""

    def _reset(self, args: List[str]) -> str:
        if not args:
            return "Uso: !reset <id>"
        client = self._store.reset_client(args[0])
        if client is None:
            return CLIENT_NOT_FOUND_TEXT.format(client_id=args[0])
        return f"Cliente {client.name or client.client_id} reseteado.\nHistorial limpio, estado: new, memoria borrada."

    def _close(self, args: List[str]) -> str:
        if not args:
            return "Uso: !close <id>"
        closed = self.close_client(args[0])
        if closed is None:
            return f"No hay asignacion activa para {args[0]}"
        return f"Asignacion cerrada: {args[0]} ya no esta asignado a {closed.agent_name}"
