"""
Local durable blob store.
Keys are relative paths ("audio/12.mp3") under a storage root; public
URLs are the key appended to a base URL.
"""

import logging
import os
import tempfile
from pathlib import Path

from readaloud.core.constants import ErrorCode
from readaloud.core.error_codes import JobError
from readaloud.core.security_utils import safe_join

logger = logging.getLogger(__name__)


class LocalBlobStore:

    def __init__(self, root: Path, base_url: str = "/storage"):
        self.root = Path(root)
        self.base_url = base_url.rstrip('/')

    def path(self, key: str) -> Path:
        return safe_join(self.root, key)

    def put(self, key: str, data: bytes) -> str:
        """
        Write atomically (temp file + rename) and return the public URL.
        Raises JobError(storage_failed) on any filesystem error.
        """
        target = self.path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix='.', suffix='.part')
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(tmp, target)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise JobError(ErrorCode.STORAGE_FAILED, f"Storage failed for {key}: {e}")

        logger.info("Stored %s (%d bytes)", key, len(data))
        return self.url(key)

    def exists(self, key: str | None) -> bool:
        if not key:
            return False
        try:
            return self.path(key).is_file()
        except ValueError:
            return False

    def get(self, key: str) -> bytes:
        return self.path(key).read_bytes()

    def url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def delete(self, key: str | None) -> bool:
        if not key:
            return False
        try:
            self.path(key).unlink()
        except FileNotFoundError:
            return False
        logger.info("Deleted %s", key)
        return True
