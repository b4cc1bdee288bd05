"""
chunkvault: encrypted, chunked filesystem backup.

Streams a directory through tar, gpg and split into numbered
chunk files, and streams the chunks back through cat, gpg and
tar to restore it. Every byte moves through a chain of external
processes wired together by background copier threads.
"""

import os

__version__ = "0.1.0"

CHUNKVAULT_HOME = os.environ.get("CHUNKVAULT_HOME", "~/.chunkvault")
