#!/usr/bin/env python3
"""Gate: security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call mentions reader/staff personal data without redaction

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "email",
    "recipient",
    "to_addr",
    "notes",
    "full_name",
    "password",
    "request.body",
    "request.json",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# logger.info/debug/warning/error/critical/exception(...)
LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
)


def _call_text(lines: list[str], start: int) -> str:
    """Text of the call opening on lines[start], up to its closing paren."""
    depth = 0
    collected = []
    for line in lines[start:]:
        code = line.split("#")[0]
        collected.append(code)
        depth += code.count("(") - code.count(")")
        if depth <= 0:
            break
    return "\n".join(collected)


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    errors = []
    lines = content.splitlines()

    for index, line in enumerate(lines):
        lineno = index + 1
        code = line.split("#")[0]
        if not code.strip():
            continue

        if PRINT_PATTERN.search(code):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(code):
            call = _call_text(lines, index)
            if any(rp in call for rp in REDACTION_PATTERNS):
                continue
            call_lower = call.lower()
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in call_lower:
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (safe_log_context/redact_value)"
                    )

    return errors


def check_tree(src_dir: Path) -> list[str]:
    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))
    return all_errors


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors = check_tree(src_dir)
    if all_errors:
        sys.stderr.write("Security/PII gate FAILED:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Security/PII gate PASSED\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
