"""
Verified uploads.

"Uploaded" and "certified" are separate guarantees: a certification timeout
after a successful write surfaces as CertificationTimeout, and the blob id is
still recorded in the tracking store.
"""

import logging
from typing import Optional

from ..config import UploadOptions, VerificationOptions
from ..errors import NetworkError, ValidationError
from ..models import BlobInfo, BlobRecord, QuorumResult, UploadVerification, WriteResult
from .context import VerificationContext
from .verification import BlobVerifier

logger = logging.getLogger(__name__)


class UploadVerifier:
    """Writes a blob and verifies it post-write."""

    def __init__(self, context: VerificationContext, verifier: Optional[BlobVerifier] = None):
        self.context = context
        self.verifier = verifier or BlobVerifier(context)
        self.tracker = self.verifier.tracker
        self.availability = self.verifier.availability

    async def verify_upload(self, content: bytes, options: Optional[UploadOptions] = None) -> UploadVerification:
        """
        Upload content and verify the result.

        Args:
            content: Payload to store
            options: Upload options

        Returns:
            UploadVerification

        Raises:
            ValidationError: empty payload
            NetworkError: the write itself failed
            ContentMismatch / AttributeMismatch: read-back differs
            CertificationTimeout: waited for certification and it did not arrive
        """
        options = options or UploadOptions()
        if not content:
            raise ValidationError("Cannot upload an empty payload", field="content")

        # Fingerprint before the write so it exists even if the response is slow.
        checksums = self.context.checksums.compute(content)
        attributes = {key: str(value) for key, value in options.attributes.items()}

        try:
            write_result = await self.context.storage.write_blob(
                content, self.context.signer, attributes, options.epochs
            )
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"Blob write failed: {e}", operation="write_blob", cause=e) from e

        blob_id = write_result.blob_id
        logger.info(f"Uploaded {len(content)} bytes as blob {blob_id}")

        if options.verify_content:
            result = await self.verifier.verify_blob(
                blob_id,
                content,
                attributes,
                VerificationOptions(
                    require_certification=False,
                    verify_attributes=bool(attributes),
                    min_providers=options.min_providers,
                ),
            )
            info = BlobInfo(
                blob_id=blob_id,
                registered_epoch=result.details.registered_epoch or 0,
                size=result.details.size,
                certified_epoch=result.details.certified_epoch if result.details.certified else None,
            )
            quorum = QuorumResult(result.poa_complete, result.providers, options.min_providers)
        else:
            info = await self.tracker.check_certification(blob_id)
            quorum = None

        record = self._track(blob_id, content, checksums, attributes, info, write_result, options)

        certified_epoch = info.certified_epoch
        if options.wait_for_certification and certified_epoch is None:
            certified_epoch = await self.tracker.wait_for_certification(blob_id, options.wait_timeout)
            if record is not None:
                record.mark_certified(certified_epoch)
                self.context.tracking_store.save_blob_record(record)
            quorum = None  # certification changes the provider picture

        if quorum is None:
            quorum = await self.availability.check_quorum(blob_id, options.min_providers)

        return UploadVerification(
            blob_id=blob_id,
            checksums=checksums,
            certified=certified_epoch is not None,
            certified_epoch=certified_epoch,
            poa_complete=quorum.poa_complete,
            has_min_providers=quorum.has_min_providers,
            providers=quorum.providers,
        )

    def _track(
        self,
        blob_id: str,
        content: bytes,
        checksums,
        attributes,
        info: BlobInfo,
        write_result: WriteResult,
        options: UploadOptions,
    ) -> Optional[BlobRecord]:
        """Create the tracking record for a fresh write, if a store is configured."""
        store = self.context.tracking_store
        if store is None:
            return None

        registered_epoch = info.registered_epoch
        end_epoch = info.end_epoch
        object_id = info.object_id or write_result.object_id
        written = write_result.blob_info
        if written is not None:
            registered_epoch = written.registered_epoch
            end_epoch = end_epoch or written.end_epoch
            object_id = object_id or written.object_id

        record = BlobRecord(
            blob_id=blob_id,
            size=len(content),
            checksums=checksums,
            registered_epoch=registered_epoch,
            expiration_epoch=end_epoch if end_epoch is not None else registered_epoch + options.epochs,
            certified_epoch=info.certified_epoch,
            attributes=attributes,
            object_id=object_id,
        )
        store.save_blob_record(record)
        logger.debug(f"Tracking blob {blob_id} until epoch {record.expiration_epoch}")
        return record
