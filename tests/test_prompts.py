from __future__ import annotations

from pathlib import Path

from recon import repository as repo
from recon.prompts import load_prompt_library, read_prompt_file

LIBRARY = Path(__file__).resolve().parents[1] / "prompt_library"


def test_bundled_library_loads(store):
    added = load_prompt_library(store, LIBRARY)
    assert added
    for name in added:
        prompt = repo.get_prompt_by_name(store, name)
        assert "{{target_profile}}" in prompt["template"]


def test_list_fields_become_bullets(tmp_path):
    path = tmp_path / "invite.yaml"
    path.write_text(
        "name: invite\n"
        "template: 'Hello {{target_profile}}'\n"
        "dos:\n  - be brief\n  - mention the date\n"
        "donts: no links\n",
        encoding="utf-8",
    )
    prompt = read_prompt_file(path)
    assert prompt["dos"] == "- be brief\n- mention the date"
    assert prompt["donts"] == "no links"
    assert prompt["system_prompt"] == ""


def test_name_defaults_to_stem_and_empty_template_skipped(tmp_path):
    (tmp_path / "from-stem.yml").write_text("template: hi\n", encoding="utf-8")
    (tmp_path / "empty.yaml").write_text("name: empty\n", encoding="utf-8")
    (tmp_path / "list.yaml").write_text("- not a mapping\n", encoding="utf-8")
    assert read_prompt_file(tmp_path / "from-stem.yml")["name"] == "from-stem"
    assert read_prompt_file(tmp_path / "empty.yaml") is None
    assert read_prompt_file(tmp_path / "list.yaml") is None


def test_reload_keeps_existing(store, tmp_path):
    (tmp_path / "a.yaml").write_text("name: a\ntemplate: first\n", encoding="utf-8")
    assert load_prompt_library(store, tmp_path) == ["a"]
    (tmp_path / "a.yaml").write_text("name: a\ntemplate: second\n", encoding="utf-8")
    assert load_prompt_library(store, tmp_path) == []
    assert repo.get_prompt_by_name(store, "a")["template"] == "first"


def test_missing_directory(store, tmp_path):
    assert load_prompt_library(store, tmp_path / "nope") == []
