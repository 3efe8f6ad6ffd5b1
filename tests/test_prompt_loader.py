from salesdesk.prompt_loader import load_prompt, render_prompt
from conftest import PROMPTS_DIR


def test_bom_and_crlf_are_normalized(tmp_path):
    path = tmp_path / "p.txt"
    path.write_bytes("\ufeffHola <<NAME>>\r\nAdios\r\n".encode("utf-8"))
    assert load_prompt(path) == "Hola <<NAME>>\nAdios\n"


def test_render_fills_known_and_blanks_unknown_placeholders():
    assert render_prompt("<<A>> y <<B>>", {"A": "uno"}) == "uno y "


def test_values_are_not_rescanned_for_placeholders():
    assert render_prompt("<<A>>", {"A": "<<B>>", "B": "x"}) == "<<B>>"


def test_bundled_templates_only_use_known_placeholders():
    system = load_prompt(PROMPTS_DIR / "sales_system.txt")
    rendered = render_prompt(
        system,
        {"BUSINESS_NAME": "T", "CLIENT_MEMORY": "M", "CATALOG_SUMMARY": "S", "PRODUCT_CONTEXT": "P"},
    )
    assert "<<" not in rendered
    memory = load_prompt(PROMPTS_DIR / "client_memory.txt")
    assert "<<CURRENT_MEMORY>>" in memory
    assert "<<USER_MESSAGE>>" in memory
