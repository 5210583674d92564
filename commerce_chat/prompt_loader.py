from __future__ import annotations

import re
from pathlib import Path
from typing import Dict

PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")

CLASSIFIER_SYSTEM_PROMPT = "classifier_system.txt"
RESPONSE_SYNTHESIS_PROMPT = "response_synthesis.txt"


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by the intent classifier.
    Failure Modes: UnicodeDecodeError triggers a tolerant decode that drops invalid bytes;
        a missing file raises FileNotFoundError.
    If Removed: The classifier has no system instruction or synthesis template.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def render_prompt(template: str, values: Dict[str, str]) -> str:
    """Fill {{name}} placeholders; unknown names are left untouched so JSON braces survive."""
    return PLACEHOLDER_RE.sub(lambda match: str(values.get(match.group(1), match.group(0))), template)
