import pathlib
from typing import Dict, List, Optional, Sequence, Union

import pytest

from salesdesk.app import build_assistant
from salesdesk.catalog import CatalogIndex
from salesdesk.config import AgentSeed, Settings
from salesdesk.store import CrmStore

ROOT = pathlib.Path(__file__).resolve().parents[1]
CATALOG_PATH = ROOT / "resources" / "catalogo_contexto.json"
PROMPTS_DIR = ROOT / "salesdesk" / "prompts"

OWNER = "573000000000"
AUDITOR = "573111111111"
AGENT_ANA = "573200000001"
AGENT_BETO = "573200000002"


class FakeBackend:
    """Scripted stand-in for GeminiClient.

    Each call pops the next scripted item: a string is returned, an exception is raised.
    When the script runs out, `default` is returned.
    """

    def __init__(self, script: Optional[List[Union[str, Exception]]] = None, default: str = "Respuesta de prueba") -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: List[Dict[str, object]] = []

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        user_message: str,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "history": list(history),
                "user_message": user_message,
                "temperature": temperature,
            }
        )
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default


def make_settings(tmp_path: pathlib.Path, **overrides) -> Settings:
    values = dict(
        gemini_api_key="test-key",
        gemini_model="gemini-test",
        catalog_path=CATALOG_PATH,
        data_dir=tmp_path,
        prompts_dir=PROMPTS_DIR,
        business_name="Tienda Test",
        business_phone=OWNER,
        auditors=(AUDITOR,),
        agents=(AgentSeed("Ana", AGENT_ANA), AgentSeed("Beto", AGENT_BETO)),
        backoff_base_seconds=0.0,
        min_exchanges_for_purchase=1,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def catalog_index() -> CatalogIndex:
    index = CatalogIndex(CATALOG_PATH)
    assert index.load()
    return index


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> CrmStore:
    return CrmStore()


@pytest.fixture
def assistant(settings, backend, store):
    return build_assistant(settings, backend, store=store)
