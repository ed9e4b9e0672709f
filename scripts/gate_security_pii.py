#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call references message content, recipients or credentials
  without going through safe_log_context/redact_value

Message text and credentials flow through every module here, so logger
calls are checked on the parsed AST, not line by line.

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Identifiers that must not reach a logger call without redaction
SENSITIVE_NAMES = frozenset(
    {
        "payload",
        "body",
        "raw_body",
        "text",
        "credentials",
        "bag",
        "access_token",
        "bot_token",
        "app_secret",
        "webhook_secret",
        "verify_token",
        "recipient_id",
        "sender_id",
        "sender_name",
    }
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})

REDACTION_CALLS = frozenset({"safe_log_context", "redact_value", "redact_string"})


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id == "logger"
    )


def _call_name(node: ast.Call) -> str | None:
    if isinstance(node.func, ast.Name):
        return node.func.id
    if isinstance(node.func, ast.Attribute):
        return node.func.attr
    return None


def _referenced_names(node: ast.AST) -> set[str]:
    """Identifiers and dict keys used in a call's arguments, skipping redacted subtrees."""
    names: set[str] = set()
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, ast.Call) and _call_name(current) in REDACTION_CALLS:
            continue
        if isinstance(current, ast.Name):
            names.add(current.id)
        elif isinstance(current, ast.Attribute):
            names.add(current.attr)
        elif isinstance(current, ast.keyword) and current.arg:
            names.add(current.arg)
        elif isinstance(current, ast.Dict):
            names.update(
                k.value for k in current.keys
                if isinstance(k, ast.Constant) and isinstance(k.value, str)
            )
        stack.extend(ast.iter_child_nodes(current))
    return names


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        tree = ast.parse(filepath.read_text(encoding="utf-8"), filename=str(filepath))
    except (UnicodeDecodeError, SyntaxError) as e:
        return [f"{filepath}: cannot parse ({type(e).__name__})"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filepath}:{node.lineno}: print() not allowed in runtime code")
            continue
        if not _is_logger_call(node):
            continue

        arguments = ast.Module(body=[ast.Expr(a) for a in node.args], type_ignores=[])
        leaked = _referenced_names(arguments)
        for kw in node.keywords:
            leaked |= _referenced_names(kw.value)
        for name in sorted(leaked & SENSITIVE_NAMES):
            errors.append(
                f"{filepath}:{node.lineno}: logger call with '{name}' "
                "must use redaction (safe_log_context/redact_value)"
            )

    return errors


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
