import asyncio

from salesdesk.client_memory import ClientMemoryUpdater, clip_memory, keyword_memory
from salesdesk.prompt_loader import load_prompt
from salesdesk.store import CrmStore
from conftest import PROMPTS_DIR, FakeBackend


def _updater(backend, store, enabled=True):
    template = load_prompt(PROMPTS_DIR / "client_memory.txt")
    return ClientMemoryUpdater(store, backend, template, business_name="Tienda Test", enabled=enabled)


def test_keyword_memory_appends_without_duplicates():
    first = keyword_memory("", "Me interesa la Retay con el plan pro, es para defensa")
    assert first.splitlines() == [
        "- Marca de interes: RETAY",
        "- Plan preferido: Pro",
        "- Motivo: defensa personal",
    ]
    assert keyword_memory(first, "la retay, plan pro") == first
    assert keyword_memory(first, "y el revólver?").endswith("- Interesado en: revolver")


def test_clip_memory_keeps_six_lines():
    raw = "\n".join(f"linea {n}" for n in range(10)) + "\n\n"
    assert clip_memory(raw).splitlines() == [f"linea {n}" for n in range(6)]


def test_llm_profile_is_stored_with_prompt_context():
    store = CrmStore()
    store.upsert_client("c1")
    backend = FakeBackend(["- Nombre: Laura\n- Ciudad: Cali"])
    result = asyncio.run(_updater(backend, store).update("c1", "soy Laura de Cali", "Hola Laura"))

    assert result == "- Nombre: Laura\n- Ciudad: Cali"
    assert store.get_client("c1").memory == result
    call = backend.calls[0]
    assert call["temperature"] == 0.1
    assert "soy Laura de Cali" in call["user_message"]
    assert "(Cliente nuevo, sin memoria previa)" in call["user_message"]
    assert "Tienda Test" in call["user_message"]


def test_backend_failure_falls_back_to_keywords():
    store = CrmStore()
    store.upsert_client("c1", memory="- Nombre: Laura")
    backend = FakeBackend([RuntimeError("down")])
    result = asyncio.run(_updater(backend, store).update("c1", "quiero entrar al club", "claro"))
    assert result == "- Nombre: Laura\n- Interesado en: Club / Membresia"
    assert store.get_client("c1").memory == result


def test_disabled_updater_does_nothing():
    store = CrmStore()
    store.upsert_client("c1", memory="previa")
    backend = FakeBackend()
    result = asyncio.run(_updater(backend, store, enabled=False).update("c1", "retay", "ok"))
    assert result == "previa"
    assert backend.calls == []
