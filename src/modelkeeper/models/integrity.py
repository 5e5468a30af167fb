"""
Artifact Integrity Verification

Decides whether a file on disk is the artifact the registry describes:
expected size, matching checksum, and a plausible format header.
"""

import hashlib
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from ..core.error_handling import IntegrityError
from ..utils.file_utils import get_file_hash
from .types import ArtifactFormat

DEFAULT_ALGORITHM = "sha256"

GGUF_MAGIC = b"GGUF"
# ModelProto field 1 (ir_version) as a varint: tag byte 0x08.
ONNX_FIRST_TAG = 0x08
SAFETENSORS_HEADER_PREFIX = 8


def parse_checksum(checksum: str) -> Tuple[str, str]:
    """
    Split ``"algo:hex"`` into ``(algo, hex)``. A bare hex digest is sha256.

    Raises:
        ValueError: if the algorithm is not available in hashlib
    """
    checksum = checksum.strip()
    if ":" in checksum:
        algorithm, digest = checksum.split(":", 1)
        algorithm = algorithm.strip().lower()
    else:
        algorithm, digest = DEFAULT_ALGORITHM, checksum
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unknown checksum algorithm '{algorithm}'")
    return algorithm, digest.strip().lower()


@dataclass
class VerificationReport:
    """Result of checking one file against its expected properties."""
    path: Path
    failures: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    low_trust: bool = False
    actual_size: int = 0
    actual_checksum: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failures

    def fail(self, dimension: str, message: str) -> None:
        self.failures.append(dimension)
        self.messages.append(message)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "ok": self.ok,
            "failures": list(self.failures),
            "messages": list(self.messages),
            "low_trust": self.low_trust,
            "actual_size": self.actual_size,
            "actual_checksum": self.actual_checksum,
        }


class IntegrityVerifier:
    """
    Size, checksum and structure checks for model artifacts.

    Fresh downloads are held to an exact size. Files already on disk are
    checked with ``size_tolerance_bytes`` of slack to absorb rounding in
    registry metadata.
    """

    def __init__(self, size_tolerance_bytes: int = 1024, min_artifact_bytes: int = 1024):
        if size_tolerance_bytes < 0:
            raise ValueError("size_tolerance_bytes must not be negative")
        self.size_tolerance_bytes = size_tolerance_bytes
        self.min_artifact_bytes = min_artifact_bytes

    def verify_size(self, path: Path, expected: Optional[int], exact: bool = True) -> Tuple[bool, int]:
        """
        Compare the file size to ``expected``.

        Returns:
            ``(ok, actual_size)``. An unknown expected size (0 or None) passes.
        """
        actual = Path(path).stat().st_size
        if not expected:
            return True, actual
        if exact:
            return actual == expected, actual
        return abs(actual - expected) <= self.size_tolerance_bytes, actual

    def verify_checksum(self, path: Path, expected: Optional[str]) -> Tuple[Optional[bool], Optional[str]]:
        """
        Hash the file with the algorithm named by ``expected``.

        Returns:
            ``(ok, actual_digest)``. ``ok`` is None when there is no checksum
            to compare against, and False for an unknown algorithm.
        """
        if not expected or not expected.strip():
            return None, None
        try:
            algorithm, digest = parse_checksum(expected)
        except ValueError as e:
            logger.error(f"Cannot verify {Path(path).name}: {e}")
            return False, None
        actual = get_file_hash(path, algorithm)
        return actual == digest, actual

    def verify_structure(self, path: Path, artifact_format: ArtifactFormat = ArtifactFormat.ONNX) -> Tuple[bool, str]:
        """Minimum length plus a format header sniff."""
        path = Path(path)
        size = path.stat().st_size
        if size < self.min_artifact_bytes:
            return False, f"{size} bytes is below the {self.min_artifact_bytes} byte minimum"

        with open(path, "rb") as f:
            head = f.read(16)

        if artifact_format == ArtifactFormat.GGUF:
            if not head.startswith(GGUF_MAGIC):
                return False, "missing GGUF magic"
        elif artifact_format == ArtifactFormat.ONNX:
            if not head or head[0] != ONNX_FIRST_TAG:
                return False, f"unexpected ONNX leading byte {head[:1].hex() or '(none)'}"
        elif artifact_format == ArtifactFormat.SAFETENSORS:
            if len(head) < SAFETENSORS_HEADER_PREFIX:
                return False, "too short for a safetensors header"
            (header_len,) = struct.unpack("<Q", head[:SAFETENSORS_HEADER_PREFIX])
            if header_len == 0 or header_len > size - SAFETENSORS_HEADER_PREFIX:
                return False, f"safetensors header length {header_len} out of range"
            if head[SAFETENSORS_HEADER_PREFIX:SAFETENSORS_HEADER_PREFIX + 1] != b"{":
                return False, "safetensors header is not a JSON object"
        return True, ""

    def verify(
        self,
        path: Path,
        expected_size: Optional[int] = None,
        expected_checksum: Optional[str] = None,
        exact_size: bool = True,
        artifact_format: ArtifactFormat = ArtifactFormat.ONNX,
    ) -> VerificationReport:
        """Run every check and collect all failing dimensions."""
        path = Path(path)
        report = VerificationReport(path=path)
        if not path.is_file():
            report.fail("missing", f"{path} does not exist")
            return report

        size_ok, report.actual_size = self.verify_size(path, expected_size, exact=exact_size)
        if not size_ok:
            report.fail(
                "size",
                f"size {report.actual_size} does not match expected {expected_size}"
                + ("" if exact_size else f" (tolerance {self.size_tolerance_bytes})"),
            )

        checksum_ok, report.actual_checksum = self.verify_checksum(path, expected_checksum)
        if checksum_ok is None:
            report.low_trust = True
            logger.warning(f"No checksum declared for {path.name}; integrity is unverified")
        elif not checksum_ok:
            report.fail("checksum", f"checksum mismatch for {path.name}")

        structure_ok, reason = self.verify_structure(path, artifact_format)
        if not structure_ok:
            report.fail("structure", f"{path.name} failed structure check: {reason}")

        return report

    def ensure_verified(self, path: Path, **kwargs) -> VerificationReport:
        """Like ``verify`` but raises IntegrityError on the first failing dimension."""
        report = self.verify(path, **kwargs)
        if not report.ok:
            raise IntegrityError(
                "; ".join(report.messages),
                dimension=report.failures[0],
                metadata={"failures": list(report.failures), "path": str(path)},
            )
        return report
