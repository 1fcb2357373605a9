from __future__ import annotations

import json
import re

from .models import ParsedBackupLogs, SnapshotError, SnapshotHook

_FIELD_PATTERN = re.compile(r'([A-Za-z_][\w.\-]*)=("(?:[^"\\]|\\.)*"|\S*)')
_HOOK_STARTED_MESSAGE = "running exec hook"
_HOOK_FAILED_MESSAGE = "error executing hook"
_HOOK_OUTPUT_PREFIXES = ("stdout: ", "stderr: ")


def parse_backup_logs(raw: bytes) -> ParsedBackupLogs:
    """Extract errors, warnings and exec hook runs from a decompressed backup log.

    Each line is a logfmt record written by the backup controller, for example
    ``time="..." level=error msg="Error backing up item" error="..." namespace=apps``.
    Hook lines carry ``hookName``/``hookPhase``/``hookContainer``/``hookCommand``
    plus the pod ``name`` and ``namespace``; the ``stdout: ``/``stderr: `` lines
    that follow a hook run close it.
    """
    errors: list[SnapshotError] = []
    warnings: list[SnapshotError] = []
    hooks: list[SnapshotHook] = []
    hooks_by_key: dict[tuple[str, str, str], SnapshotHook] = {}

    for line in raw.decode("utf-8", errors="replace").splitlines():
        fields = parse_logfmt_line(line)
        if not fields:
            continue

        level = fields.get("level", "").lower()
        message = fields.get("msg", "")
        namespace = fields.get("namespace") or None
        hook = hooks_by_key.get(_hook_key(fields)) if "hookName" in fields else None

        if message.lower() == _HOOK_STARTED_MESSAGE:
            hook = SnapshotHook(
                name=fields.get("hookName", ""),
                namespace=fields.get("namespace", ""),
                phase=fields.get("hookPhase", ""),
                pod_name=fields.get("name", ""),
                container_name=fields.get("hookContainer", ""),
                command=fields.get("hookCommand", ""),
                started_at=fields.get("time") or None,
            )
            hooks.append(hook)
            hooks_by_key[_hook_key(fields)] = hook
            continue

        if hook is not None and message.startswith(_HOOK_OUTPUT_PREFIXES):
            stream, _, output = message.partition(": ")
            setattr(hook, stream, output)
            hook.finished_at = fields.get("time") or hook.finished_at
            continue

        if level == "error":
            entry = SnapshotError(title=message, message=fields.get("error") or message, namespace=namespace)
            errors.append(entry)
            if hook is not None and message.lower() == _HOOK_FAILED_MESSAGE:
                hook.errors.append(entry)
                hook.finished_at = fields.get("time") or hook.finished_at
        elif level in {"warning", "warn"}:
            entry = SnapshotError(title=message, message=fields.get("error", ""), namespace=namespace)
            warnings.append(entry)
            if hook is not None:
                hook.warnings.append(entry)

    return ParsedBackupLogs(errors=errors, warnings=warnings, hooks=hooks)


def parse_logfmt_line(line: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for key, value in _FIELD_PATTERN.findall(line.strip()):
        fields[key] = _unquote(value)
    return fields


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        try:
            return json.loads(value)
        except ValueError:
            return value[1:-1]
    return value


def _hook_key(fields: dict[str, str]) -> tuple[str, str, str]:
    return (fields.get("namespace", ""), fields.get("name", ""), fields.get("hookName", ""))
