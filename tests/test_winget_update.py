# tests/test_winget_update.py

import logging
from unittest.mock import MagicMock, patch

import pytest

from winget_update import (
    Choice,
    DecisionOutcome,
    SessionState,
    Status,
    UpdateCandidate,
    UpdateSession,
    apply_choice,
    format_exit_code,
    main,
    parse_choice,
    parse_upgrade_table,
    render_summary,
    upgrade_command,
)

SAMPLE = """\
Name        Id       Version   Available   Source
----------------------------------------------------
App One     Vendor.One   1.0      1.1      winget
App Two     Vendor.Two   2.0      2.1      winget
"""

THREE = """\
Name          Id             Version  Available  Source
-------------------------------------------------------
Alpha Tool    Vendor.Alpha   1.0      1.5        winget
Beta          Vendor.Beta    3.2.1    3.3.0      winget
Gamma Viewer  Vendor.Gamma   10.0     11.0       msstore
"""


def answers(*values):
    """Prompt reader that replays *values* and records the prompts."""
    it = iter(values)
    reader = MagicMock(side_effect=lambda prompt: next(it))
    return reader


def no_prompt(prompt):
    raise AssertionError(f"unexpected prompt: {prompt}")


def candidates(text=THREE):
    return parse_upgrade_table(text).candidates


# --- PARSER ---
def test_parse_sample_rows():
    result = parse_upgrade_table(SAMPLE)
    assert result.rejected == []
    assert result.candidates == [
        UpdateCandidate("App One", "Vendor.One", "1.0", "1.1", "winget"),
        UpdateCandidate("App Two", "Vendor.Two", "2.0", "2.1", "winget"),
    ]


def test_parse_keeps_row_order():
    ids = [c.id for c in candidates()]
    assert ids == ["Vendor.Alpha", "Vendor.Beta", "Vendor.Gamma"]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "No installed package found matching input criteria.",
        "Name  Id  Version  Available\nFoo  Vendor.Foo  1.0  2.0\n",
    ],
)
def test_no_separator_means_no_candidates(text):
    result = parse_upgrade_table(text)
    assert result.candidates == []
    assert result.rejected == []


def test_source_column_is_optional():
    text = "Name  Id  Version  Available\n-----\nFoo Bar  Vendor.Foo  1.0  2.0\n"
    [c] = parse_upgrade_table(text).candidates
    assert c == UpdateCandidate("Foo Bar", "Vendor.Foo", "1.0", "2.0", "")


def test_malformed_rows_are_dropped_with_warning(caplog):
    text = SAMPLE + "garbage\nOnly  Two\n"
    with caplog.at_level(logging.WARNING):
        result = parse_upgrade_table(text)
    assert [c.id for c in result.candidates] == ["Vendor.One", "Vendor.Two"]
    assert result.rejected == ["garbage", "Only  Two"]
    assert sum("Could not parse" in r.message for r in caplog.records) == 2


def test_blank_lines_are_skipped():
    text = SAMPLE.replace("App Two", "\n   \nApp Two")
    assert len(parse_upgrade_table(text).candidates) == 2


def test_spinner_carriage_returns_are_ignored():
    text = "   - \r   \\ \r" + SAMPLE
    assert len(parse_upgrade_table(text).candidates) == 2


def test_footer_ends_the_table():
    text = (
        SAMPLE
        + "2 upgrades available.\n"
        + "\n"
        + "The following packages have an upgrade available, but require explicit targeting for upgrade:\n"
        + "Name     Id          Version  Available  Source\n"
        + "----------------------------------------------\n"
        + "Pinned   Vendor.Pin  1.0      2.0        winget\n"
    )
    result = parse_upgrade_table(text)
    assert [c.id for c in result.candidates] == ["Vendor.One", "Vendor.Two"]
    assert result.rejected == []


def test_double_space_inside_name_splits_early():
    # Known limitation: the first 2+ space run always ends the name
    text = "Name  Id  Version  Available\n-----\nFoo  Bar  Vendor.X  1.0  2.0\n"
    [c] = parse_upgrade_table(text).candidates
    assert (c.name, c.id, c.current_version, c.available_version, c.source) == (
        "Foo", "Bar", "Vendor.X", "1.0", "2.0"
    )


# --- CHOICES ---
@pytest.mark.parametrize(
    "answer, expected",
    [
        ("y", Choice.YES),
        ("Y", Choice.YES),
        ("n", Choice.NO),
        (" a ", Choice.ALL),
        ("S", Choice.SKIP_ALL),
        ("q\n", Choice.QUIT),
        ("", None),
        ("yes", None),
        ("x", None),
    ],
)
def test_parse_choice(answer, expected):
    assert parse_choice(answer) is expected


@pytest.mark.parametrize(
    "choice, expected_state, expected_skip",
    [
        (Choice.YES, SessionState(), None),
        (Choice.NO, SessionState(), Status.SKIPPED_BY_USER),
        (Choice.ALL, SessionState(apply_all_remaining=True), None),
        (Choice.SKIP_ALL, SessionState(skip_all_remaining=True), Status.SKIPPED_BY_USER),
        (
            Choice.QUIT,
            SessionState(skip_all_remaining=True, user_quit=True),
            Status.SKIPPED_USER_QUIT,
        ),
    ],
)
def test_apply_choice(choice, expected_state, expected_skip):
    state, skip = apply_choice(SessionState(), choice)
    assert state == expected_state
    assert skip is expected_skip
    assert not (state.apply_all_remaining and state.skip_all_remaining)


# --- DECISION LOOP ---
def test_no_then_yes_scenario():
    upgrade = MagicMock(return_value=0)
    session = UpdateSession(upgrade, reader=answers("N", "Y"))
    rec = session.run(parse_upgrade_table(SAMPLE).candidates)

    assert [(o.candidate.name, o.candidate.current_version, o.to_version) for o in rec.updated] == [
        ("App Two", "2.0", "2.1")
    ]
    assert [(o.candidate.name, o.status) for o in rec.skipped_or_failed] == [
        ("App One", Status.SKIPPED_BY_USER)
    ]
    upgrade.assert_called_once_with("Vendor.Two", "2.1")


def test_quit_skips_everything_after():
    upgrade = MagicMock(return_value=0)
    reader = answers("q")
    rec = UpdateSession(upgrade, reader=reader).run(candidates())

    assert rec.updated == []
    assert [o.status for o in rec.skipped_or_failed] == [Status.SKIPPED_USER_QUIT] * 3
    assert reader.call_count == 1
    upgrade.assert_not_called()


def test_quit_after_first_update():
    upgrade = MagicMock(return_value=0)
    rec = UpdateSession(upgrade, reader=answers("y", "q")).run(candidates())

    assert [o.candidate.id for o in rec.updated] == ["Vendor.Alpha"]
    assert [o.status for o in rec.skipped_or_failed] == [Status.SKIPPED_USER_QUIT] * 2
    assert upgrade.call_count == 1


def test_apply_all_runs_rest_without_prompt():
    upgrade = MagicMock(side_effect=[0, 5, 0])
    reader = answers("A")
    rec = UpdateSession(upgrade, reader=reader).run(candidates())

    assert reader.call_count == 1
    assert [o.candidate.id for o in rec.updated] == ["Vendor.Alpha", "Vendor.Gamma"]
    [failed] = rec.skipped_or_failed
    assert failed.candidate.id == "Vendor.Beta"
    assert failed.status is Status.UPDATE_FAILED
    assert failed.exit_code == 5
    assert upgrade.call_count == 3


def test_skip_all_marks_remaining():
    upgrade = MagicMock(return_value=0)
    rec = UpdateSession(upgrade, reader=answers("s")).run(candidates())

    assert [o.status for o in rec.skipped_or_failed] == [
        Status.SKIPPED_BY_USER,
        Status.SKIPPED_ALL_REMAINING,
        Status.SKIPPED_ALL_REMAINING,
    ]
    upgrade.assert_not_called()


def test_initial_apply_all_state_never_prompts():
    upgrade = MagicMock(return_value=0)
    session = UpdateSession(upgrade, reader=no_prompt, state=SessionState(apply_all_remaining=True))
    rec = session.run(candidates())
    assert len(rec.updated) == 3


def test_invalid_answers_reprompt(caplog):
    upgrade = MagicMock(return_value=0)
    reader = answers("maybe", "", "y")
    with caplog.at_level(logging.WARNING):
        outcome = UpdateSession(upgrade, reader=reader).process(candidates()[0])

    assert outcome.status is Status.UPDATED
    assert reader.call_count == 3
    assert sum("Invalid choice" in r.message for r in caplog.records) == 2


def test_end_of_input_counts_as_quit():
    def eof(prompt):
        raise EOFError

    upgrade = MagicMock(return_value=0)
    rec = UpdateSession(upgrade, reader=eof).run(candidates())
    assert [o.status for o in rec.skipped_or_failed] == [Status.SKIPPED_USER_QUIT] * 3


def test_failed_update_is_not_retried():
    upgrade = MagicMock(return_value=0x8A150011)
    rec = UpdateSession(upgrade, reader=answers("y")).run(candidates()[:1])

    upgrade.assert_called_once()
    [o] = rec.failed
    assert o.label == "Update failed (exit code 0x8A150011)"


@pytest.mark.parametrize(
    "replies",
    [
        ("y", "y", "y"),
        ("n", "n", "n"),
        ("n", "a"),
        ("y", "s"),
        ("x", "q"),
        ("a",),
    ],
)
def test_every_candidate_gets_one_outcome(replies):
    upgrade = MagicMock(side_effect=[0, 1, 0])
    rec = UpdateSession(upgrade, reader=answers(*replies)).run(candidates())
    assert rec.total == 3
    assert len(rec.updated) + len(rec.skipped_or_failed) == 3


# --- SUMMARY ---
def test_summary_nothing_to_update():
    assert render_summary([], []) == "Nothing to update."


def test_summary_sorts_skipped_by_name():
    a, b, c = candidates()
    skipped = [
        DecisionOutcome(c, Status.SKIPPED_BY_USER),
        DecisionOutcome(a, Status.UPDATE_FAILED, exit_code=3),
    ]
    updated = [DecisionOutcome(b, Status.UPDATED, exit_code=0, to_version="3.3.0")]
    text = render_summary(updated, skipped)
    lines = text.splitlines()

    assert lines[0] == "Updated (1):"
    assert lines[1].split() == ["Name", "From", "To", "Id"]
    assert lines[3].split() == ["Beta", "3.2.1", "3.3.0", "Vendor.Beta"]
    assert "Skipped or failed (2):" in lines
    assert text.index("Alpha Tool") < text.index("Gamma Viewer")
    assert "Update failed (exit code 3)" in text


def test_summary_only_skipped():
    a = candidates()[0]
    text = render_summary([], [DecisionOutcome(a, Status.SKIPPED_ALL_REMAINING)])
    assert "Updated" not in text
    assert "Skipped (skip all)" in text


@pytest.mark.parametrize(
    "code, expected",
    [(1, "1"), (5, "5"), (0x8A150011, "0x8A150011"), (-1, "0xFFFFFFFF")],
)
def test_format_exit_code(code, expected):
    assert format_exit_code(code) == expected


# --- CLI ---
def test_upgrade_command_targets_exact_version():
    args = upgrade_command("Vendor.One", "1.1", "winget")
    assert args[:2] == ["winget", "upgrade"]
    assert args[args.index("--id") + 1] == "Vendor.One"
    assert args[args.index("--version") + 1] == "1.1"
    assert "--exact" in args
    assert args[-2:] == ["--source", "winget"]


@patch("winget_update.which", return_value=False)
def test_main_without_winget(_which):
    assert main([]) == 1


@patch("winget_update.is_admin", return_value=True)
@patch("winget_update.which", return_value=True)
@patch("winget_update.run_capture", return_value=(0, "No installed package found."))
def test_main_nothing_to_update(_cap, _which, _admin, capsys):
    assert main([]) == 0
    assert "Nothing to update." in capsys.readouterr().out


@patch("winget_update.run_interactive", return_value=0)
@patch("winget_update.is_admin", return_value=True)
@patch("winget_update.which", return_value=True)
@patch("winget_update.run_capture", return_value=(0, SAMPLE))
def test_main_updates_accepted(_cap, _which, _admin, run_interactive, monkeypatch, capsys):
    replies = iter(["n", "y"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(replies))

    assert main([]) == 0
    run_interactive.assert_called_once()
    assert "Vendor.Two" in run_interactive.call_args.args[0]
    out = capsys.readouterr().out
    assert "Updated (1):" in out
    assert "Skipped by user" in out


@patch("winget_update.run_interactive", return_value=1)
@patch("winget_update.is_admin", return_value=True)
@patch("winget_update.which", return_value=True)
@patch("winget_update.run_capture", return_value=(0, SAMPLE))
def test_main_yes_reports_failures(_cap, _which, _admin, run_interactive):
    assert main(["--yes"]) == 2
    assert run_interactive.call_count == 2


@patch("winget_update.run_interactive")
@patch("winget_update.is_admin", return_value=True)
@patch("winget_update.which", return_value=True)
@patch("winget_update.run_capture", return_value=(0, SAMPLE))
def test_main_dry_run_runs_nothing(_cap, _which, _admin, run_interactive, capsys):
    assert main(["--yes", "--dry-run"]) == 0
    run_interactive.assert_not_called()
    assert "(dry-run) winget upgrade --id Vendor.One" in capsys.readouterr().out
