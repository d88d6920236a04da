"""
tagnotes - a small note keeping service.

Notes are short pieces of text or code, tagged with hashtags, optionally
carrying file attachments, and kept in a per-user manual order. This package
implements the storage core that keeps a note, its hashtags, its attachments
and its position consistent across a relational database and a blob
directory, plus the HTTP API in front of it.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tagnotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
