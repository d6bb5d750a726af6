"""Console text handling for serial shells.

A serial console is one unframed character stream: the shell echoes what
we type, prints the command output, then prints its prompt again, all
interleaved with terminal control sequences.  This module turns that
stream into a command's stdout:

- ``strip_ansi_codes`` removes ``ESC [ ... <letter>`` control sequences.
- ``split_lines`` splits on ``\\n`` (dropping a trailing ``\\r``), without
  producing a phantom empty line after a final newline.
- ``CommandOutputExtractor`` is fed raw bytes as they arrive and decides
  when the command has completed and what its output was.

All matching operates on the stripped text, never on the raw bytes.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from typeguard import typechecked

from . import SERIAL_DEFAULT_SHELL_PROMPT

logger = logging.getLogger("device_channels.console")

_ESC = "\x1b"

# Generic prompt endings accepted in addition to the configured prompt.
GENERIC_PROMPTS = ("$ ", "# ")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape sequences from *text*.

    On ``ESC`` followed by ``[`` everything up to and including the first
    ASCII letter is discarded.  A lone ``ESC`` is dropped.  Every other
    character passes through unchanged, so stripping is idempotent.
    """
    if _ESC not in text:
        return text

    result = []
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch != _ESC:
            result.append(ch)
            i += 1
            continue

        i += 1
        if i < length and text[i] == "[":
            i += 1
            while i < length:
                terminator = text[i]
                i += 1
                if terminator.isascii() and terminator.isalpha():
                    break
    return "".join(result)


def split_lines(text: str) -> List[str]:
    """Split *text* on ``\\n``, dropping the ``\\r`` of ``\\r\\n`` endings.

    ``"a\\r\\nb\\r\\n"`` gives ``["a", "b"]`` and ``""`` gives ``[]``.
    Unlike ``str.splitlines`` a bare ``\\r`` does not start a new line.
    """
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def looks_like_shell(text: str) -> bool:
    """Loose shell-readiness check used after the wake-up burst."""
    return "$" in text or "#" in text


def has_prompt(text: str, shell_prompt: str) -> bool:
    """Return ``True`` when *text* ends with or contains any accepted prompt."""
    for prompt in (shell_prompt,) + GENERIC_PROMPTS:
        if text.endswith(prompt) or prompt in text:
            return True
    return False


def remove_prompt(text: str, shell_prompt: str) -> str:
    """Cut *text* at the first prompt occurrence and trim it.

    Patterns are checked in order ``"$ "``, ``"# "``, then the configured
    prompt.  When a generic match lies inside an occurrence of the
    configured prompt (``"root@dev:~# "`` contains ``"# "``), the cut is
    made at the start of the configured prompt instead.

    Only the text from the first match onwards is removed.  With the
    default ``"$ "`` prompt, a full prompt such as ``"user@host:~$ "``
    leaves ``"user@host:~"`` as the last output line; configure the
    complete prompt to have it removed.
    """
    for pattern in GENERIC_PROMPTS + (shell_prompt,):
        pos = text.find(pattern)
        if pos < 0:
            continue
        if shell_prompt and pattern != shell_prompt:
            prompt_pos = text.find(shell_prompt)
            if 0 <= prompt_pos <= pos < prompt_pos + len(shell_prompt):
                pos = prompt_pos
        return text[:pos].strip()
    return text.strip()


def find_echo_line(lines: List[str], command: str) -> Optional[int]:
    """Return the index of the first line echoing *command*, if any."""
    wanted = command.strip()
    for index, line in enumerate(lines):
        trimmed = line.strip()
        if wanted in trimmed or trimmed.endswith(wanted):
            return index
    return None


@typechecked
class CommandOutputExtractor:
    """Incrementally extracts one command's output from console bytes.

    Feed every chunk read from the port to ``feed``; it returns ``True``
    once the shell prompt has come back.  ``stdout`` then holds the output
    with the echo line and the prompt removed.

    The whole buffer is re-decoded and re-stripped on every chunk, so
    multi-byte characters and escape sequences split across reads are
    handled, and the final result does not depend on how the stream was
    chunked.

    Example::

        extractor = CommandOutputExtractor("echo hi", shell_prompt="$ ")
        extractor.feed(b"echo hi\\r\\nhi\\r\\n$ ")   # -> True
        extractor.stdout                            # -> "hi"
    """

    def __init__(
        self,
        command: str,
        shell_prompt: Optional[str] = None,
        encoding: str = "utf-8",
    ) -> None:
        self.command = command
        self.shell_prompt = shell_prompt or SERIAL_DEFAULT_SHELL_PROMPT
        self.encoding = encoding
        self._buffer = bytearray()
        self._echo_index: Optional[int] = None
        self.stdout = ""
        self.complete = False

    @property
    def echo_seen(self) -> bool:
        return self._echo_index is not None

    @property
    def bytes_received(self) -> int:
        return len(self._buffer)

    def text(self) -> str:
        """The whole received stream, decoded and ANSI-stripped."""
        return strip_ansi_codes(self._buffer.decode(self.encoding, errors="replace"))

    def feed(self, chunk: bytes) -> bool:
        """Add *chunk* to the buffer and re-evaluate.  Returns completion."""
        if self.complete:
            return True
        self._buffer.extend(chunk)
        lines = split_lines(self.text())

        if self._echo_index is None:
            self._echo_index = find_echo_line(lines, self.command)
            if self._echo_index is None:
                # Without the echo anything we have is prompt noise
                return False
            logger.debug(
                "[CONSOLE] Echo of %r found on line %d", self.command, self._echo_index,
            )

        after_echo = lines[self._echo_index + 1:]
        self.stdout = "\n".join(after_echo)

        if has_prompt(self._text_after_echo(self._echo_index), self.shell_prompt):
            self.stdout = remove_prompt(self.stdout, self.shell_prompt)
            self.complete = True
            logger.debug("[CONSOLE] Prompt detected, %d bytes consumed", len(self._buffer))
        return self.complete

    def _text_after_echo(self, echo_index: int) -> str:
        text = self.text()
        newline_count, pos = 0, 0
        while newline_count <= echo_index:
            nl = text.find("\n", pos)
            if nl < 0:
                return ""
            pos = nl + 1
            newline_count += 1
        return text[pos:]

    def snapshot(self) -> Tuple[str, int]:
        """Current ``(stdout, bytes_received)``, for timeout diagnostics."""
        return self.stdout, len(self._buffer)
