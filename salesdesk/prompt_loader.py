from __future__ import annotations

import re
from pathlib import Path
from typing import Dict

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Read a prompt template with BOM and Windows line endings removed.
    Inputs/Outputs: Input is a Path to the template; output is the text with "\\n" newlines.
    Side Effects / State: None; reads the filesystem.
    Dependencies: Used by build_assistant for the reply and client memory templates.
    Failure Modes: Invalid UTF-8 bytes are dropped; a missing file raises FileNotFoundError.
    If Removed: The assistant has no persona or memory instructions.
    Testing Notes: A file saved with a BOM and CRLF loads identical to a clean one.
    """
    # Decode leniently and drop a leading BOM.
    raw = prompt_path.read_bytes()
    text = raw.decode("utf-8", errors="ignore").lstrip("\ufeff")
    return text.replace("\r\n", "\n")


def render_prompt(template: str, values: Dict[str, str]) -> str:
    """Fill <<KEY>> placeholders; placeholders without a value render empty."""
    return PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), ""), template)
