from __future__ import annotations

import os
from pathlib import Path


def sanitize_ssl_keylogfile() -> bool:
    """Drop SSLKEYLOGFILE from the environment when it cannot be written.

    httpx and the OpenAI SDK both build SSL contexts that honour this variable;
    an unusable path makes every provider call fail before any request is sent.
    Returns True when the variable was removed.
    """
    keylog_path = os.getenv("SSLKEYLOGFILE", "").strip()
    if not keylog_path:
        return False

    path = Path(keylog_path)
    try:
        if not path.parent.exists():
            raise FileNotFoundError(path.parent)
        # Validate writability without truncating existing files.
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError:
        os.environ.pop("SSLKEYLOGFILE", None)
        return True
    return False
