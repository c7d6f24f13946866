# recon/prompts.py
"""
Prompt library loader.

Each *.yaml / *.yml file under the library directory holds one prompt:

  name: awareness-training-invite
  system_prompt: ...
  template: |
    ... {{target_profile}} ...
  dos: |
    - ...
  donts: |
    - ...

Prompts are keyed by name; a name already in the store is left untouched.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from recon import repository as repo
from recon.db import Store

log = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(f"- {v}" for v in value)
    return str(value)


def read_prompt_file(path: Path) -> dict[str, str] | None:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        log.warning("Skipping %s: not a mapping", path.name)
        return None
    name = str(data.get("name") or path.stem).strip()
    template = _as_text(data.get("template")).strip()
    if not template:
        log.warning("Skipping %s: empty template", path.name)
        return None
    return {
        "name": name,
        "template": template,
        "system_prompt": _as_text(data.get("system_prompt")).strip(),
        "dos": _as_text(data.get("dos")).strip(),
        "donts": _as_text(data.get("donts")).strip(),
    }


def load_prompt_library(store: Store, directory: str | Path) -> list[str]:
    """Insert prompts found in directory; returns the names that were added."""
    root = Path(directory)
    if not root.is_dir():
        log.warning("Prompt library directory not found: %s", root)
        return []
    added: list[str] = []
    files = sorted([*root.glob("*.yaml"), *root.glob("*.yml")])
    for path in files:
        prompt = read_prompt_file(path)
        if prompt is None:
            continue
        if repo.get_prompt_by_name(store, prompt["name"]) is not None:
            log.debug("Prompt %s already present", prompt["name"])
            continue
        repo.insert_prompt(store, **prompt)
        added.append(prompt["name"])
    log.info("Loaded %d new prompt(s) from %s", len(added), root)
    return added


__all__ = ["load_prompt_library", "read_prompt_file"]
