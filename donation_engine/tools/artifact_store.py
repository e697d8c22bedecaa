"""Filesystem store for rendered receipt artifacts"""

import os
import tempfile
from pathlib import Path
from typing import Iterator
from donation_engine.constants import ARTIFACT_SUBDIR
from donation_engine.utils.errors import PersistenceError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024


class ArtifactStore:
    """
    One PDF per receipt, named from the receipt number.

    References are relative to the store root ("receipts/receipt-<number>.pdf")
    so they survive moving the upload directory.
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir).resolve()
        (self.root / ARTIFACT_SUBDIR).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def artifact_name(receipt_number: str) -> str:
        return f"receipt-{receipt_number}.pdf"

    @classmethod
    def reference_for(cls, receipt_number: str) -> str:
        return f"{ARTIFACT_SUBDIR}/{cls.artifact_name(receipt_number)}"

    def resolve(self, reference: str) -> Path:
        """
        Map a reference to a path inside the store.

        Raises:
            PersistenceError: If the reference escapes the store root
        """
        path = (self.root / reference).resolve()
        if self.root not in path.parents:
            raise PersistenceError(f"Artifact reference outside store: {reference}")
        return path

    def save(self, receipt_number: str, content: bytes) -> str:
        """Write atomically and return the artifact reference"""
        reference = self.reference_for(receipt_number)
        target = self.resolve(reference)

        fd, tmp_path = tempfile.mkstemp(dir=target.parent, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, target)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write artifact {reference}: {e}")

        logger.info("Artifact stored", reference=reference, size_bytes=len(content))
        return reference

    def exists(self, reference: str) -> bool:
        return self.resolve(reference).is_file()

    def read_bytes(self, reference: str) -> bytes:
        try:
            return self.resolve(reference).read_bytes()
        except OSError as e:
            raise PersistenceError(f"Failed to read artifact {reference}: {e}")

    def open_stream(self, reference: str, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the artifact in chunks for streamed downloads"""
        path = self.resolve(reference)
        if not path.is_file():
            raise PersistenceError(f"Artifact not found: {reference}")

        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
