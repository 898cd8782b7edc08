#!/usr/bin/env python3
"""Gate: Security & PII check for source files.

Fails if, anywhere under src/:
- print() is called in runtime code
- a logger call mentions a sensitive keyword (phone, token, payload, ...)
  without passing its fields through the redaction helpers

Logger calls are inspected as whole (possibly multi-line) expressions.

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "payload",
    "request.body",
    "request.json",
    "message_text",
    "phone",
    "token",
    "qrcode",
    "webhook",
)

LOGGER_METHODS = ("debug", "info", "warning", "error", "critical", "exception")

# Names that indicate proper redaction usage
REDACTION_NAMES = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOGGER_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id == "logger"
    )


def _is_print_call(node: ast.Call) -> bool:
    return isinstance(node.func, ast.Name) and node.func.id == "print"


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Check Python source for violations. Returns list of error messages."""
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as e:
        return [f"{filename}:{e.lineno}: syntax error"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue

        if _is_print_call(node):
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
            continue

        if not _is_logger_call(node):
            continue

        segment = ast.get_source_segment(source, node) or ""
        if any(name in segment for name in REDACTION_NAMES):
            continue
        segment_lower = segment.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in segment_lower:
                errors.append(
                    f"{filename}:{node.lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/redact_value)"
                )
                break

    return errors


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


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
        sys.stderr.write("Security/PII gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Security/PII gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
