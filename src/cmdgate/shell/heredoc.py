"""Strip heredoc bodies from a command before it is scanned for danger.

Heredoc bodies are literal data handed to a command's stdin, so text such as
``rm -rf /`` inside ``cat << 'EOF' ... EOF`` must not be mistaken for a
command. Anything after the terminator line is a command again and is kept.
"""

from __future__ import annotations

import re

# ``<<`` or ``<<-`` but not the ``<<<`` here-string, then an optionally quoted word.
_INTRODUCER_RE = re.compile(r"(?<!<)<<(?!<)(?P<dash>-?)\s*(?P<quote>['\"]?)(?P<delimiter>\w+)(?P=quote)")


def _in_arithmetic(raw: str, position: int) -> bool:
    before = raw[:position]
    return before.count("((") > before.count("))")


def _in_quotes(raw: str, position: int) -> bool:
    """Whether ``position`` sits inside a quoted string.

    ``$( )`` opens a fresh command context even inside double quotes, so the
    ``git commit -m "$(cat <<'EOF' ...)"`` idiom still counts as a heredoc.
    """
    stack: list[str] = []
    index = 0
    while index < position:
        char = raw[index]
        top = stack[-1] if stack else None
        if top == "'":
            if char == "'":
                stack.pop()
        elif char == "\\":
            index += 1
        elif char == "$" and raw.startswith("(", index + 1):
            stack.append("(")
            index += 1
        elif char == ")" and top == "(":
            stack.pop()
        elif char == '"':
            if top == '"':
                stack.pop()
            else:
                stack.append('"')
        elif char == "'" and top != '"':
            stack.append("'")
        index += 1
    return bool(stack) and stack[-1] != "("


def _find_introducer(raw: str) -> re.Match[str] | None:
    """Return the first ``<<`` that opens a heredoc.

    Bit shifts (inside ``$(( ))`` / ``(( ))`` or with a bare numeric operand
    such as ``x<<2``) and ``<<`` inside quoted strings are skipped; treating
    them as heredocs would hide the rest of the command from scanning.
    """
    for match in _INTRODUCER_RE.finditer(raw):
        if match.group("delimiter").isdigit() and not match.group("quote"):
            continue
        if _in_arithmetic(raw, match.start()) or _in_quotes(raw, match.start()):
            continue
        return match
    return None


def _terminator_re(delimiter: str, allow_tabs: bool) -> re.Pattern[str]:
    indent = r"\t*" if allow_tabs else ""
    return re.compile(rf"\n{indent}{re.escape(delimiter)}[ \t]*(?:\n|$)")


def extract_scan_text(raw: str) -> str:
    """Return ``raw`` with every heredoc body removed.

    The text before each introducer is kept, and so is the rest of the
    introducer's own line (``> out.txt && make``), since the shell reads the
    body only from the following line. The body up to and including the
    terminator line is dropped and the remainder is processed recursively so
    several heredocs in one command are all handled. An unterminated heredoc
    swallows everything after its introducer line.
    """

    match = _find_introducer(raw)
    if match is None:
        return raw

    before = raw[: match.start()]
    remainder = raw[match.end() :]
    newline = remainder.find("\n")
    line_rest = remainder if newline == -1 else remainder[:newline]
    head = f"{before} {line_rest}" if line_rest.strip() else before

    terminator = _terminator_re(match.group("delimiter"), allow_tabs=bool(match.group("dash")))
    end = terminator.search(remainder, max(newline, 0))
    if newline == -1 or end is None:
        return head

    after = remainder[end.end() :]
    return f"{head} {extract_scan_text(after)}"


def has_heredoc(raw: str) -> bool:
    return _find_introducer(raw) is not None
