"""
Provides methods for hashing and verifying cached artifact files.
"""

import hashlib
import logging
from pathlib import Path

log = logging.getLogger(__name__)

CHUNK_SIZE = 1048576  # 1 MB


class FileIntegrityChecker:
    """A collection of static methods for checksumming stored artifacts."""

    @staticmethod
    def compute_checksum(filepath: Path) -> tuple[str, int]:
        """
        Hashes a file with SHA-256 in fixed-size chunks.

        Args:
            filepath: Path to the file to hash.

        Returns:
            A (hex digest, size in bytes) tuple computed from the same read.
        """
        digest = hashlib.sha256()
        size = 0
        with open(filepath, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                digest.update(chunk)
                size += len(chunk)
        return digest.hexdigest(), size

    @staticmethod
    def check_artifact(filepath: Path, expected_checksum: str) -> bool:
        """
        Re-hashes an artifact and compares it with the checksum recorded at add time.

        Returns:
            True if the file exists and its hash matches, False otherwise.
        """
        try:
            actual, _ = FileIntegrityChecker.compute_checksum(filepath)
        except FileNotFoundError:
            log.warning(f"Integrity check failed for '{filepath}': file is missing.")
            return False
        except OSError as e:
            log.warning(f"Integrity check failed for '{filepath}': {e}")
            return False
        if actual != expected_checksum:
            log.warning(
                f"Integrity check failed for '{filepath}': checksum mismatch "
                f"(expected {expected_checksum[:12]}…, got {actual[:12]}…)."
            )
            return False
        return True
