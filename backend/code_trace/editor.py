"""
Typing-exercise logic: character-by-character comparison of what the user
typed against the template, progress stats, and auto-indent on newline.
"""

import html
from dataclasses import dataclass

CORRECT = "correct"
INCORRECT = "incorrect"
PENDING = "pending"
EXTRA = "extra"


@dataclass
class Progress:
    typed: int
    correct: int
    incorrect: int
    total: int
    accuracy: float
    completion: float
    first_error: int | None

    @property
    def finished(self) -> bool:
        return self.total > 0 and self.correct == self.total and self.typed == self.total


def compare(target: str, typed: str) -> list[str]:
    """
    State of each target character, followed by EXTRA for every typed
    character past the end of the target.
    """
    states = []
    for i, expected in enumerate(target):
        if i >= len(typed):
            states.append(PENDING)
        elif typed[i] == expected:
            states.append(CORRECT)
        else:
            states.append(INCORRECT)
    states.extend(EXTRA for _ in range(len(typed) - len(target)))
    return states


def progress(target: str, typed: str) -> Progress:
    states = compare(target, typed)
    correct = states.count(CORRECT)
    incorrect = states.count(INCORRECT) + states.count(EXTRA)

    first_error = None
    for i, state in enumerate(states):
        if state in (INCORRECT, EXTRA):
            first_error = i
            break

    return Progress(
        typed=len(typed),
        correct=correct,
        incorrect=incorrect,
        total=len(target),
        accuracy=correct / len(typed) if typed else 1.0,
        completion=correct / len(target) if target else 1.0,
        first_error=first_error,
    )


def _leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def auto_indent(target: str, typed: str) -> str:
    """
    Whitespace to insert after the user presses Enter.

    The line being started in ``typed`` is matched to the target line with the
    same index; whatever indentation the user has already typed on it is
    subtracted, so calling this twice never doubles the indent.
    """
    line_index = typed.count("\n")
    target_lines = target.split("\n")
    if line_index >= len(target_lines):
        return ""

    indent = _leading_whitespace(target_lines[line_index])
    current = typed.rsplit("\n", 1)[-1]
    if not indent.startswith(current):
        return ""
    return indent[len(current):]


def _runs(target: str, typed: str):
    """Group consecutive characters sharing a state: yields (state, text)."""
    states = compare(target, typed)
    chars = [
        typed[i] if state == EXTRA else target[i]
        for i, state in enumerate(states)
    ]
    if not states:
        return
    start = 0
    for i in range(1, len(states) + 1):
        if i == len(states) or states[i] != states[start]:
            yield states[start], "".join(chars[start:i])
            start = i


def render_diff(target: str, typed: str) -> str:
    """HTML fragment with one <span class="c-STATE"> per run of characters."""
    return "".join(
        f'<span class="c-{state}">{html.escape(text)}</span>'
        for state, text in _runs(target, typed)
    )
