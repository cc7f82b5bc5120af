"""Denylist-based command danger classifier."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from cmdgate.shell.heredoc import extract_scan_text

OutcomeCode = Literal[
    "BLOCKED_EXACT_COMMAND",
    "BLOCKED_PATTERN",
    "BLOCKED_NO_WORKSPACE",
    "BLOCKED_NOT_GIT_REPO",
    "BLOCKED_PATH_OUTSIDE_WORKSPACE",
    "EXECUTION_ERROR",
]

PATTERN_REASON = "Command matches dangerous pattern and is not allowed for security reasons"

# Command separators, newline included; a lone ``|`` is left alone so sed/awk/grep pipelines survive.
CHAIN_SPLIT_RE = re.compile(r"\s*(?:&&|\|\||;|\n)\s*")

EXACT_COMMANDS: tuple[str, ...] = (
    "dd",
    "mkfs",
    "fdisk",
    "parted",
    "gparted",
    "shutdown",
    "reboot",
    "halt",
    "poweroff",
    "su",
    "sudo su",
    "unlink",
    "shred",
    "truncate",
)


@dataclass(frozen=True, slots=True)
class DangerRule:
    name: str
    category: str
    pattern: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(name: str, category: str, pattern: str) -> DangerRule:
    return DangerRule(name=name, category=category, pattern=re.compile(pattern))


# `rm -rf <path>` is deliberately absent: RmPathValidator confines it to the workspace.
DANGER_PATTERNS: tuple[DangerRule, ...] = (
    _rule("rm-wildcard", "file-removal", r"\brm\s+.*\*"),
    _rule("rm-current-dir", "file-removal", r"\brm\b.*\s\.(?:/)?(?:\s|$)"),
    _rule("rmdir-recursive", "file-removal", r"\brmdir\b.*\s-(?:-recursive|[a-zA-Z]*r)"),
    _rule("unlink", "file-removal", r"\bunlink\s+"),
    _rule("shred", "file-removal", r"\bshred\s+"),
    _rule("truncate-zero", "file-removal", r"\btruncate\s+.*-s\s*0"),
    _rule("find-delete", "find", r"\bfind\s+.*-delete"),
    _rule("find-exec-rm", "find", r"\bfind\s+.*-exec\s+rm\b"),
    _rule("find-xargs-rm", "find", r"\bfind\s+.*\|\s*xargs\s+rm\b"),
    _rule("redirect-clear", "content-clearing", r"^\s*>\s*\S+"),
    _rule("dev-null-clear", "content-clearing", r"\bcat\s+/dev/null\s*>"),
    _rule("git-clean", "git", r"\bgit\s+clean\s+-[a-zA-Z]*[fd]"),
    _rule("git-reset-hard", "git", r"\bgit\s+reset\s+--hard"),
    _rule("mv-dev-null", "file-removal", r"\bmv\s+.*/dev/null"),
    _rule("mkfs", "disk", r"\bmkfs\."),
    _rule("format-drive", "disk", r"\bformat\s+[a-zA-Z]:"),
    _rule("fdisk", "disk", r"\bfdisk\b"),
    _rule("parted", "disk", r"\bg?parted\b"),
    _rule("shutdown", "power", r"\bshutdown\b"),
    _rule("reboot", "power", r"\breboot\b"),
    _rule("halt", "power", r"\bhalt\b"),
    _rule("poweroff", "power", r"\bpoweroff\b"),
    _rule("init-runlevel", "power", r"\binit\s+[016]\b"),
    _rule("dd-device", "disk", r"\bdd\s+.*of=/dev/"),
    _rule("chmod-777-root", "permissions", r"\bchmod\s+.*777\s+/"),
    _rule("chmod-recursive-777", "permissions", r"\bchmod\s+.*-R.*777"),
    _rule("chown-recursive-root", "permissions", r"\bchown\s+.*-R.*root"),
    _rule("iptables", "service", r"\biptables\b"),
    _rule("ufw-disable", "service", r"\bufw\s+.*disable"),
    _rule("systemctl-stop", "service", r"\bsystemctl\s+.*\bstop\b"),
    _rule("service-stop", "service", r"\bservice\s+.*\bstop\b"),
    _rule("apt-purge", "packages", r"\bapt(?:-get)?\s+.*\bpurge\b"),
    _rule("yum-remove", "packages", r"\byum\s+.*\bremove\b"),
    _rule("brew-force-uninstall", "packages", r"\bbrew\s+.*uninstall.*--force"),
    _rule("mount-device", "disk", r"\bmount\s+.*/dev/"),
    _rule("umount-force", "disk", r"\bumount\s+.*-f"),
    _rule("fsck-yes", "disk", r"\bfsck\s+.*-y"),
    _rule("killall-9", "process", r"\bkillall\s+.*-9"),
    _rule("pkill-init", "process", r"\bpkill\s+.*-9.*\binit\b"),
    _rule("kill-init", "process", r"\bkill\s+-(?:9|KILL|SIGKILL)\s+1(?:\s|$)"),
    _rule("crontab-remove", "cron", r"\bcrontab\s+.*-r"),
    _rule("history-clear", "history", r"\bhistory\s+.*-c"),
    _rule("bash-history-clear", "history", r">\s*~/\.bash_history"),
    _rule("redirect-block-device", "device", r">\s*/dev/(?:sd[a-z]|nvme|hd[a-z]|disk)"),
    _rule("redirect-etc", "device", r">\s*/etc/"),
    _rule("modprobe-remove", "kernel", r"\bmodprobe\s+.*-r"),
    _rule("insmod", "kernel", r"\binsmod\b"),
    _rule("rmmod", "kernel", r"\brmmod\b"),
    _rule("curl-pipe-shell", "remote-exec", r"\bcurl\s+.*\|\s*(?:sudo\s+)?(?:sh|bash|zsh)\b"),
    _rule("wget-pipe-shell", "remote-exec", r"\bwget\s+.*\|\s*(?:sudo\s+)?(?:sh|bash|zsh)\b"),
)


@dataclass(frozen=True, slots=True)
class Verdict:
    dangerous: bool
    code: OutcomeCode | None = None
    reason: str = ""
    rule: str | None = None


SAFE = Verdict(dangerous=False)


class DangerClassifier:
    """Decides whether heredoc-stripped command text is dangerous.

    Three checks, first hit wins: a bare-command denylist matched on whole
    leading words, an ordered regex denylist, and recursion into every
    segment between ``&&``, ``||``, ``;`` and newlines so a destructive
    command cannot hide behind a harmless first one.
    """

    def __init__(
        self,
        exact_commands: tuple[str, ...] = EXACT_COMMANDS,
        patterns: tuple[DangerRule, ...] = DANGER_PATTERNS,
    ) -> None:
        self._exact_commands = tuple(name.lower() for name in exact_commands)
        self._patterns = tuple(patterns)

    @property
    def exact_commands(self) -> tuple[str, ...]:
        return self._exact_commands

    @property
    def patterns(self) -> tuple[DangerRule, ...]:
        return self._patterns

    def classify(self, scan_text: str) -> Verdict:
        normalized = scan_text.strip().lower()
        for name in self._exact_commands:
            if normalized == name or normalized.startswith(f"{name} "):
                return Verdict(
                    dangerous=True,
                    code="BLOCKED_EXACT_COMMAND",
                    reason=f'Command "{name}" is not allowed for security reasons',
                    rule=name,
                )

        for rule in self._patterns:
            if rule.matches(scan_text):
                return Verdict(
                    dangerous=True,
                    code="BLOCKED_PATTERN",
                    reason=PATTERN_REASON,
                    rule=rule.name,
                )

        segments = split_chain(scan_text)
        if len(segments) > 1:
            for segment in segments:
                verdict = self.classify(segment)
                if verdict.dangerous:
                    return verdict

        return SAFE


def split_chain(text: str) -> list[str]:
    return [segment.strip() for segment in CHAIN_SPLIT_RE.split(text)]


_default_classifier = DangerClassifier()


def classify_command(command: str) -> Verdict:
    """Strip heredoc bodies from ``command`` and classify what remains."""
    return _default_classifier.classify(extract_scan_text(command))
