import time

import pytest

from salesdesk.admin import HELP_TEXT, UNKNOWN_COMMAND_TEXT, AdminCommands
from salesdesk.router import AssignmentRouter
from salesdesk.store import CrmStore


@pytest.fixture
def admin_setup():
    store = CrmStore()
    store.upsert_agent("Ana", "5731")
    store.upsert_client("c1", name="Laura", memory="- Marca de interes: RETAY")
    store.append_message("c1", "user", "hola")
    store.append_message("c1", "assistant", "bienvenida")
    router = AssignmentRouter(store)
    return store, router, AdminCommands(store, router)


def test_help_and_unknown_commands(admin_setup):
    _, _, admin = admin_setup
    assert admin.execute("!help") == HELP_TEXT
    assert admin.execute("!AYUDA") == HELP_TEXT
    assert admin.execute("!borrar todo") == UNKNOWN_COMMAND_TEXT


def test_stats_lists_agents(admin_setup):
    _, router, admin = admin_setup
    router.assign("c1")
    text = admin.execute("!stats")
    assert "Total clientes: 1" in text
    assert "Asignaciones activas: 1" in text
    assert "Ana: 1 asignados (1 activos)" in text


def test_client_card(admin_setup):
    _, router, admin = admin_setup
    router.assign("c1")
    card = admin.execute("!cliente c1")
    assert "Nombre: Laura" in card
    assert "Mensajes: 2" in card
    assert "Asignado a: Ana" in card
    assert "- Marca de interes: RETAY" in card
    assert "[user] hola" in card
    assert admin.execute("!client nadie") == "No se encontro cliente con id nadie"
    assert admin.execute("!client").startswith("Uso:")


def test_clients_list(admin_setup):
    _, _, admin = admin_setup
    text = admin.execute("!clientes")
    assert "1. [nuevo] Laura - c1" in text
    assert "_Total: 1 clientes_" in text
    assert AdminCommands(CrmStore(), AssignmentRouter(CrmStore())).execute("!clients") == "No hay clientes registrados aun."


def test_note_appends_timestamped_entries(admin_setup):
    store, _, admin = admin_setup
    assert admin.execute("!note c1 llamar manana").startswith("Nota agregada a Laura")
    admin.execute("!nota c1 ya pago")
    notes = store.get_client("c1").notes.splitlines()
    assert len(notes) == 2
    assert notes[0].endswith("] llamar manana")
    assert notes[1].endswith("] ya pago")
    assert admin.execute("!note c1").startswith("Uso:")


def test_reset_and_close(admin_setup):
    store, router, admin = admin_setup
    router.assign("c1")

    assert admin.execute("!close c1") == "Asignacion cerrada: c1 ya no esta asignado a Ana"
    assert store.get_client("c1").status == "closed"
    assert admin.execute("!cerrar c1") == "No hay asignacion activa para c1"

    assert admin.execute("!reset c1").startswith("Cliente Laura reseteado.")
    client = store.get_client("c1")
    assert client.status == "new"
    assert client.memory == ""
    assert store.count_messages("c1") == 0


def test_pipeline_report(admin_setup):
    _, router, admin = admin_setup
    router.assign("c1")
    text = admin.execute("!ventas")
    assert "[nuevo] new: 1 clientes" in text
    assert "Laura -> Ana" in text
    assert "Carga por asesor" in text
    assert "Ana: 1 activos / 1 total" in text


def test_pipeline_lists_hot_leads_with_memory_excerpt(admin_setup):
    store, _, admin = admin_setup
    store.upsert_client("c2", name="Pedro", memory="- Interesado en revolver Ekol\n- Pregunto precio")
    text = admin.execute("!pipeline")
    assert "Leads calientes" in text
    assert "Pedro (c2)" in text
    assert "- Interesado en revolver Ekol - Pregunto precio" in text
    assert "Laura (c1)" not in text
    assert admin.execute("!informe ventas") == text


def test_general_report_counts_today_and_unattended(admin_setup):
    store, router, admin = admin_setup
    store.upsert_client("c2", name="Pedro")
    router.assign("c2")
    store.upsert_client("c2", status="assigned")

    text = admin.execute("!informe")
    assert "*Hoy:*\n  Clientes nuevos: 2\n  Mensajes: 2\n  Derivaciones: 1" in text
    assert "*Ultima semana:*\n  Clientes nuevos: 2" in text
    assert "Sin atender: 1" in text
    assert "Asignados: 1" in text
    assert "Ana: 1 hoy | 1 activos | 1 total" in text
    assert "Clientes sin atender:*\n  - Laura (c1) - 1 msgs" in text
    assert admin.execute("!report") == text


def test_general_report_excludes_older_activity(admin_setup):
    store, _, _ = admin_setup
    later = AdminCommands(store, AssignmentRouter(store), clock=lambda: time.time() + 10 * 24 * 3600)
    text = later.execute("!informe")
    assert "Clientes nuevos: 0\n  Mensajes: 0\n  Derivaciones: 0" in text
    assert "*Ultima semana:*\n  Clientes nuevos: 0" in text
    assert "Clientes: 1" in text
