"""Lockfile format detection."""

import json
import re


def identify(content: str, filename: str | None = None) -> str:
    """Detect the lockfile format from content and filename hints.

    Args:
        content: The lockfile content
        filename: Optional filename for additional context

    Returns:
        Detected format: 'npm-v1', 'npm-v2', 'npm-v3', or 'unknown'
    """
    if filename and not filename.endswith(("package-lock.json", "npm-shrinkwrap.json", ".json")):
        return "unknown"

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        # Truncated or hand-edited files still reveal their version
        match = re.search(r'"lockfileVersion"\s*:\s*(\d+)', content)
        return f"npm-v{match.group(1)}" if match and match.group(1) in ("1", "2", "3") else "unknown"

    if not isinstance(data, dict):
        return "unknown"

    version = data.get("lockfileVersion")
    if version in (1, 2, 3):
        return f"npm-v{version}"

    # Content-based detection
    if isinstance(data.get("packages"), dict):
        return "npm-v3"
    if isinstance(data.get("dependencies"), dict) and "requires" in data:
        return "npm-v1"

    return "unknown"
