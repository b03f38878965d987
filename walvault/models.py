"""
Data model for tracked blobs and verification outcomes.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


class CertificationState(Enum):
    """Certification lifecycle of a blob."""
    REGISTERED = "registered"
    CERTIFYING = "certifying"
    CERTIFIED = "certified"
    TIMED_OUT = "timed_out"


class ExpiryState(Enum):
    """Expiry classification of a tracked blob."""
    HEALTHY = "healthy"
    WARNING = "warning"
    AUTO_RENEWING = "auto_renewing"


CHECKSUM_ALGORITHMS = ("sha256", "sha512", "blake2b")


@dataclass(frozen=True)
class ChecksumSet:
    """Hex digests of a payload (sha256, sha512, blake2b-512)."""
    sha256: str
    sha512: str
    blake2b: str

    def mismatched(self, other: "ChecksumSet") -> List[str]:
        """Algorithms whose digests differ from `other`."""
        return [
            algorithm
            for algorithm in CHECKSUM_ALGORITHMS
            if getattr(self, algorithm) != getattr(other, algorithm)
        ]

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, str]) -> "ChecksumSet":
        return ChecksumSet(
            sha256=data["sha256"],
            sha512=data["sha512"],
            blake2b=data["blake2b"],
        )


@dataclass
class BlobInfo:
    """What the storage network reports about a blob."""
    blob_id: str
    registered_epoch: int
    size: int
    certified_epoch: Optional[int] = None
    end_epoch: Optional[int] = None
    object_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def certified(self) -> bool:
        return self.certified_epoch is not None


@dataclass
class BlobRecord:
    """
    Tracked unit of stored content.

    `certified_epoch` transitions once from None to a value; `expiration_epoch`
    only moves forward.
    """
    blob_id: str
    size: int
    checksums: ChecksumSet
    registered_epoch: int
    expiration_epoch: int
    certified_epoch: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    vault_id: str = "default"
    object_id: Optional[str] = None

    def __post_init__(self):
        if not self.blob_id:
            raise ValidationError("Blob record requires a blob id", field="blob_id")
        if self.certified_epoch is not None and self.certified_epoch < self.registered_epoch:
            raise ValidationError(
                f"Certified epoch {self.certified_epoch} precedes registered epoch "
                f"{self.registered_epoch} for blob {self.blob_id}",
                field="certified_epoch",
                value=self.certified_epoch,
            )

    @property
    def certified(self) -> bool:
        return self.certified_epoch is not None

    def epochs_until_expiry(self, current_epoch: int) -> int:
        return self.expiration_epoch - current_epoch

    def extend_to(self, new_epoch: int):
        """Move the lease end forward. Shortening is refused."""
        if new_epoch < self.expiration_epoch:
            raise ValidationError(
                f"Refusing to shorten lease of blob {self.blob_id} "
                f"from epoch {self.expiration_epoch} to {new_epoch}",
                field="expiration_epoch",
                value=new_epoch,
            )
        self.expiration_epoch = new_epoch

    def mark_certified(self, epoch: int):
        """Record certification. A second, different epoch is refused."""
        if self.certified_epoch is not None and self.certified_epoch != epoch:
            raise ValidationError(
                f"Blob {self.blob_id} already certified at epoch {self.certified_epoch}",
                field="certified_epoch",
                value=epoch,
            )
        if epoch < self.registered_epoch:
            raise ValidationError(
                f"Certified epoch {epoch} precedes registered epoch {self.registered_epoch}",
                field="certified_epoch",
                value=epoch,
            )
        self.certified_epoch = epoch

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["checksums"] = self.checksums.to_dict()
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BlobRecord":
        return BlobRecord(
            blob_id=data["blob_id"],
            size=data["size"],
            checksums=ChecksumSet.from_dict(data["checksums"]),
            registered_epoch=data["registered_epoch"],
            expiration_epoch=data["expiration_epoch"],
            certified_epoch=data.get("certified_epoch"),
            attributes=dict(data.get("attributes", {})),
            vault_id=data.get("vault_id", "default"),
            object_id=data.get("object_id"),
        )


@dataclass
class VerificationDetails:
    blob_id: str
    size: int
    certified: bool
    checksum: str
    certified_epoch: Optional[int] = None
    registered_epoch: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class VerificationResult:
    """
    Outcome of one verification pass.

    `success` is only True when content matched and, if certification was
    required, the blob is certified.
    """
    success: bool
    details: VerificationDetails
    poa_complete: bool
    providers: int
    has_min_providers: bool = True
    warnings: List[str] = field(default_factory=list)
    attempts: int = 1
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QuorumResult:
    poa_complete: bool
    providers: int
    min_providers: int

    @property
    def has_min_providers(self) -> bool:
        return self.providers >= self.min_providers


@dataclass
class UploadVerification:
    blob_id: str
    checksums: ChecksumSet
    certified: bool
    poa_complete: bool
    has_min_providers: bool
    providers: int = 0
    certified_epoch: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["checksums"] = self.checksums.to_dict()
        return data


@dataclass
class WriteResult:
    """Response of a storage write."""
    blob_id: str
    blob_info: Optional[BlobInfo] = None
    object_id: Optional[str] = None


@dataclass
class RenewalReceipt:
    """Response of a storage extension transaction."""
    digest: str
    new_expiration_epoch: int
