#!/usr/bin/env python3
"""
Write .env-template from the Settings model.

Every field of every nested config becomes one SECTION__FIELD line: required
fields get a placeholder, optional ones are commented out with their default.
Run from the project root after changing config.py.
"""

import sys
from enum import Enum
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from ultron_assistant.config import Settings  # noqa: E402

template_path = project_root / ".env-template"

PLACEHOLDER = "<YOUR_VALUE_HERE>"


def _default_text(value) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, list):
        return "[" + ",".join(f'"{item}"' for item in value) + "]"
    return str(value)


def build_template() -> str:
    lines = ["# Generated by scripts/sync_env_template.py - do not edit by hand", ""]

    for section_name, section_field in Settings.model_fields.items():
        section_model = section_field.annotation
        lines.append(f"# {section_name}")

        for field_name, field in section_model.model_fields.items():
            key = f"{section_name}__{field_name}".upper()
            if field.is_required():
                lines.append(f"{key}={PLACEHOLDER}")
            else:
                lines.append(f"# {key}={_default_text(field.default)}")

        lines.append("")

    return "\n".join(lines)


if __name__ == "__main__":
    template_path.write_text(build_template(), encoding="utf-8")
    print(f"✓ Wrote {template_path}")
