"""
Console text handling tests: ANSI stripping, line splitting, prompt
detection and incremental command-output extraction.

Pure functions over strings and bytes — no ports, no threads.

Run with full visibility:
    pytest tests/test_console.py -v -s
"""

from __future__ import annotations

import sys
from typing import List

import pytest

# ---------------------------------------------------------------------------
# Dependency gate
# ---------------------------------------------------------------------------
_MISSING: List[str] = []

try:
    from typeguard import TypeCheckError
except ImportError:
    _MISSING.append("typeguard")

if _MISSING:
    print(
        "\n"
        "=" * 72 + "\n"
        "  MISSING REQUIRED LIBRARIES\n"
        "=" * 72 + "\n"
        f"  The following packages are not installed: {', '.join(_MISSING)}\n"
        f"  Install them with:  pip install {' '.join(_MISSING)}\n"
        "=" * 72 + "\n",
        file=sys.stderr,
    )
    pytest.skip(
        f"Required libraries missing: {', '.join(_MISSING)}",
        allow_module_level=True,
    )

from device_channels.console import (
    CommandOutputExtractor,
    find_echo_line,
    has_prompt,
    looks_like_shell,
    remove_prompt,
    split_lines,
    strip_ansi_codes,
)


def _report(label: str, detail: str = "") -> None:
    """Uniform test-level print."""
    if detail:
        print(f"  [{label}] {detail}")
    else:
        print(f"  [{label}]")


def _extract(command: str, transcript: bytes, shell_prompt=None, chunk_size=None) -> CommandOutputExtractor:
    extractor = CommandOutputExtractor(command, shell_prompt=shell_prompt)
    if chunk_size is None:
        extractor.feed(transcript)
    else:
        for i in range(0, len(transcript), chunk_size):
            if extractor.feed(transcript[i:i + chunk_size]):
                break
    return extractor


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS: ANSI stripping
# ═══════════════════════════════════════════════════════════════════════════

class TestStripAnsiCodes:
    """ESC [ ... <letter> sequences are removed, nothing else is."""

    @pytest.mark.parametrize("raw, expected", [
        ("plain text", "plain text"),
        ("\x1b[1;32mroot@dev\x1b[0m:~# ", "root@dev:~# "),
        ("\x1b[2J\x1b[Hcleared", "cleared"),
        ("a\x1b[Kb", "ab"),
        ("\x1b[?2004hprompt$ ", "prompt$ "),
        ("", ""),
    ])
    def test_strips_csi_sequences(self, raw: str, expected: str) -> None:
        result = strip_ansi_codes(raw)
        _report("RESULT", f"{raw!r} -> {result!r}")
        assert result == expected

    def test_lone_escape_is_dropped(self) -> None:
        assert strip_ansi_codes("a\x1bb") == "ab"
        assert strip_ansi_codes("end\x1b") == "end"

    def test_unterminated_sequence_is_dropped(self) -> None:
        assert strip_ansi_codes("keep\x1b[12;3") == "keep"

    @pytest.mark.parametrize("raw", [
        "\x1b[1;32mgreen\x1b[0m text",
        "x\x1b\x1b[31my",
        "\x1b[[mA",
        "tab\there\r\n",
    ])
    def test_idempotent(self, raw: str) -> None:
        once = strip_ansi_codes(raw)
        assert strip_ansi_codes(once) == once

    def test_other_control_characters_pass_through(self) -> None:
        assert strip_ansi_codes("a\r\n\tb\x07") == "a\r\n\tb\x07"


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS: lines and prompts
# ═══════════════════════════════════════════════════════════════════════════

class TestSplitLines:

    @pytest.mark.parametrize("text, expected", [
        ("", []),
        ("a", ["a"]),
        ("a\r\nb\r\n", ["a", "b"]),
        ("a\nb", ["a", "b"]),
        ("a\r\n\r\nb", ["a", "", "b"]),
        ("\n", [""]),
        ("a\rb\n", ["a\rb"]),
    ])
    def test_split(self, text: str, expected: List[str]) -> None:
        assert split_lines(text) == expected


class TestPromptHelpers:

    def test_looks_like_shell(self) -> None:
        assert looks_like_shell("\r\nroot@dev:~# ")
        assert looks_like_shell("user$ ")
        assert not looks_like_shell("\r\ndevice login: ")

    def test_has_prompt(self) -> None:
        assert has_prompt("output\r\n# ", "> ")
        assert has_prompt("output\r\n$ ", "> ")
        assert has_prompt("output\r\n> ", "> ")
        assert has_prompt("a $ b", "> ")
        assert not has_prompt("output\r\n", "> ")

    def test_remove_prompt_generic(self) -> None:
        assert remove_prompt("hi\n$ ", "$ ") == "hi"
        assert remove_prompt("  hi  \n# ", "$ ") == "hi"

    def test_remove_prompt_inside_configured_prompt(self) -> None:
        result = remove_prompt("5.15.0\nroot@dev:~# ", "root@dev:~# ")
        _report("RESULT", f"{result!r}")
        assert result == "5.15.0"

    def test_remove_prompt_first_occurrence(self) -> None:
        # Output that itself contains "$ " is cut there
        assert remove_prompt("cost $ 5\n$ ", "$ ") == "cost"

    def test_remove_prompt_without_prompt(self) -> None:
        assert remove_prompt("  text\n", "$ ") == "text"

    def test_find_echo_line(self) -> None:
        lines = ["", "root@dev:~# uname -r", "5.15.0"]
        assert find_echo_line(lines, "uname -r") == 1
        assert find_echo_line(lines, "  uname -r ") == 1
        assert find_echo_line(lines, "ls") is None


# ═══════════════════════════════════════════════════════════════════════════
#  TESTS: CommandOutputExtractor
# ═══════════════════════════════════════════════════════════════════════════

class TestCommandOutputExtractor:
    """Echo location, completion detection and chunking independence."""

    def test_simple_echo(self) -> None:
        extractor = _extract("echo hi", b"echo hi\r\nhi\r\n$ ")
        _report("RESULT", f"complete={extractor.complete}, stdout={extractor.stdout!r}")
        assert extractor.complete
        assert extractor.stdout == "hi"

    def test_multiline_output(self) -> None:
        extractor = _extract("ls /", b"ls /\r\nbin\r\ndev\r\netc\r\nroot@dev:/# ", shell_prompt="root@dev:/# ")
        assert extractor.complete
        assert extractor.stdout == "bin\ndev\netc"

    def test_empty_output(self) -> None:
        extractor = _extract("true", b"true\r\n# ", shell_prompt="# ")
        assert extractor.complete
        assert extractor.stdout == ""

    def test_noise_before_echo_is_ignored(self) -> None:
        transcript = b"\r\n# \r\n# stale line\r\n# uptime\r\n 10:00 up 1 day\r\n# "
        extractor = _extract("uptime", transcript, shell_prompt="# ")
        assert extractor.complete
        assert extractor.stdout == "10:00 up 1 day"

    def test_prompt_before_echo_does_not_complete(self) -> None:
        extractor = CommandOutputExtractor("cat /etc/hostname", shell_prompt="# ")
        assert not extractor.feed(b"\r\n# \r\n# ")
        assert not extractor.echo_seen
        assert extractor.stdout == ""

    def test_prompt_characters_in_command_do_not_complete(self) -> None:
        extractor = CommandOutputExtractor("echo '$ '", shell_prompt="# ")
        assert not extractor.feed(b"echo '$ '\r\n")
        assert extractor.echo_seen
        assert not extractor.complete

    def test_waits_for_prompt(self) -> None:
        extractor = CommandOutputExtractor("dmesg", shell_prompt="# ")
        assert not extractor.feed(b"dmesg\r\n[    0.000000] Booting Linux\r\n")
        assert extractor.stdout == "[    0.000000] Booting Linux"
        assert extractor.feed(b"# ")
        assert extractor.stdout == "[    0.000000] Booting Linux"

    def test_ansi_colored_prompt(self) -> None:
        transcript = b"uname -r\r\n5.15.0\r\n\x1b[1;32mroot@dev\x1b[0m:~# "
        extractor = _extract("uname -r", transcript, shell_prompt="root@dev:~# ")
        assert extractor.complete
        assert extractor.stdout == "5.15.0"

    def test_default_prompt(self) -> None:
        extractor = CommandOutputExtractor("id")
        assert extractor.shell_prompt == "$ "

    def test_default_prompt_keeps_prompt_prefix(self) -> None:
        extractor = _extract("echo default", b"echo default\r\ndefault\r\nuser@device:~$ ")
        _report("RESULT", f"{extractor.stdout!r}")
        assert extractor.complete
        assert extractor.stdout == "default\nuser@device:~"

    def test_full_prompt_is_removed_when_configured(self) -> None:
        extractor = _extract(
            "echo default", b"echo default\r\ndefault\r\nuser@device:~$ ",
            shell_prompt="user@device:~$ ",
        )
        assert extractor.stdout == "default"

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
    def test_chunking_does_not_change_result(self, chunk_size: int) -> None:
        transcript = (
            "\x1b[?2004hcat /etc/os-release\r\n"
            "NAME=\"Föundries LmP\"\r\n"
            "VERSION_ID=4.0.11\r\n"
            "\x1b[1;32mroot@dev\x1b[0m:~# "
        ).encode("utf-8")
        whole = _extract("cat /etc/os-release", transcript, shell_prompt="root@dev:~# ")
        chunked = _extract(
            "cat /etc/os-release", transcript, shell_prompt="root@dev:~# ", chunk_size=chunk_size,
        )
        _report("RESULT", f"chunk={chunk_size}: {chunked.stdout!r}")
        assert whole.complete and chunked.complete
        assert chunked.stdout == whole.stdout == 'NAME="Föundries LmP"\nVERSION_ID=4.0.11'

    def test_feed_after_completion_is_ignored(self) -> None:
        extractor = _extract("echo hi", b"echo hi\r\nhi\r\n$ ")
        assert extractor.feed(b"garbage\r\n$ ")
        assert extractor.stdout == "hi"

    def test_snapshot(self) -> None:
        extractor = CommandOutputExtractor("echo hi")
        extractor.feed(b"echo hi\r\nh")
        stdout, received = extractor.snapshot()
        assert stdout == "h"
        assert received == len(b"echo hi\r\nh")
        assert extractor.bytes_received == received

    def test_rejects_text_chunks(self) -> None:
        extractor = CommandOutputExtractor("echo hi")
        with pytest.raises((TypeError, TypeCheckError)):
            extractor.feed("echo hi\r\n")  # type: ignore[arg-type]
