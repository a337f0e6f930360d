"""Tests for instruction wrapping and stop-marker scanning."""

import pytest

from localrag import InstructionFormat, Role, StopSequenceScanner, Turn
from localrag.prompting import fold_case


@pytest.fixture
def instruction_format():
    return InstructionFormat()


def test_render_history(instruction_format):
    turns = [
        Turn(Role.SYSTEM, "Be brief."),
        Turn(Role.USER, "Hi"),
        Turn(Role.ASSISTANT, "Hello"),
    ]

    rendered = instruction_format.render(turns)

    assert rendered == "<s>[INST] Be brief. [/INST]</s><s>[INST] Hi [/INST]Hello</s>"


def test_stop_markers_cover_prompt_vocabulary(instruction_format):
    markers = set(instruction_format.stop_markers)

    assert {"</s>", "<s>", "[INST]", "[/INST]", "User:", "Assistant:"} <= markers
    assert {"\nUser:", "\nAssistant:"} <= markers


def test_scanner_finds_marker_split_across_tokens(instruction_format):
    scanner = StopSequenceScanner(instruction_format.stop_markers)

    assert scanner.feed("Hello there<") is None
    assert scanner.feed("/s") is None
    assert scanner.feed("> extra") == len("Hello there")
    assert scanner.committed_text == "Hello there"


def test_scanner_is_case_insensitive(instruction_format):
    scanner = StopSequenceScanner(instruction_format.stop_markers)

    scanner.feed("Fine.\nuser: next")

    assert scanner.committed_text == "Fine."


def test_scanner_reports_earliest_marker(instruction_format):
    scanner = StopSequenceScanner(instruction_format.stop_markers)

    offset = scanner.feed("ab[INST]cd</s>")

    assert offset == 2
    assert scanner.committed_text == "ab"


def test_scanner_keeps_offset_after_stop(instruction_format):
    scanner = StopSequenceScanner(instruction_format.stop_markers)
    scanner.feed("x</s>")

    assert scanner.feed("more</s>") == 1
    assert scanner.committed_text == "x"


def test_scanner_without_marker_keeps_everything(instruction_format):
    scanner = StopSequenceScanner(instruction_format.stop_markers)
    for token in ["The ", "dose ", "is ", "5mg."]:
        assert scanner.feed(token) is None

    assert scanner.committed_text == "The dose is 5mg."


def test_fold_case_preserves_length():
    text = "İstanbul ẞ ASSISTANT:"

    folded = fold_case(text)

    assert len(folded) == len(text)
    assert folded.endswith("assistant:")


def test_strip_markers(instruction_format):
    text = "<s>[INST] The patient [/INST] was stable.</S>\nAssistant: ok"

    assert instruction_format.strip_markers(text) == "The patient  was stable. ok"
