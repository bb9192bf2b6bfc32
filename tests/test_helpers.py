from __future__ import annotations

from rce_bridge.core.helpers import clean_output, compare_population, strip_color_tags


def test_compare_population_keeps_source_order_and_inputs() -> None:
    old = ["alice", "bob", "carol"]
    new = ["dave", "bob", "erin"]

    delta = compare_population(old, new)

    assert delta.joined == ["dave", "erin"]
    assert delta.left == ["alice", "carol"]
    assert old == ["alice", "bob", "carol"]
    assert new == ["dave", "bob", "erin"]


def test_compare_population_empty_sides() -> None:
    assert compare_population([], ["a"]).joined == ["a"]
    assert compare_population(["a"], []).left == ["a"]
    delta = compare_population(["a"], ["a"])
    assert delta.joined == [] and delta.left == []


def test_strip_color_tags() -> None:
    assert strip_color_tags("<color=#ff0000>My</color> Server") == "My Server"


def test_clean_output_decodes_json_and_strips_tags() -> None:
    raw = '{\\n"Hostname": "<color=red>Rusty</color>",\\n"Players": 3\\n}'

    assert clean_output(raw) == {"Hostname": "Rusty", "Players": 3}
    assert clean_output(raw, raw_hostname=True) == {"Hostname": "<color=red>Rusty</color>", "Players": 3}


def test_clean_output_falls_back_to_raw_text() -> None:
    assert clean_output("not json") == "not json"
    assert clean_output("") is None
    assert clean_output(None) is None
