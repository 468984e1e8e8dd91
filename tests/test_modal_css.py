import re
from pathlib import Path


def test_dialog_modal_hidden_until_open() -> None:
    css = Path("static/css/main.css").read_text(encoding="utf-8")

    modal_block = re.search(r"dialog\.modal\s*\{[^}]*\}", css, re.DOTALL)
    assert modal_block, "Expected a `dialog.modal { ... }` block in static/css/main.css"
    assert "display: none;" in modal_block.group(0)

    open_block = re.search(r"dialog\.modal\[open\]\s*\{[^}]*\}", css, re.DOTALL)
    assert open_block, (
        "Expected a `dialog.modal[open] { ... }` block in static/css/main.css"
    )
    assert "display: flex;" in open_block.group(0)


def test_override_note_follows_checkbox() -> None:
    css = Path("static/css/main.css").read_text(encoding="utf-8")

    rule = re.search(r"\.duplicate-check\s+\.if-override\s*\{[^}]*\}", css, re.DOTALL)
    assert rule, "Expected a `.duplicate-check .if-override { ... }` rule"
    assert "display: none;" in rule.group(0)
    assert 'input[name="admin_override"]:checked' in css
