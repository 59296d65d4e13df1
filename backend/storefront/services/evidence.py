"""
Refund evidence storage.

The refund engine only keeps the reference returned by ``store``; raw bytes
never enter the order or refund documents. Every upload is recorded under
``evidence:{id}`` with its uploader, and refunds accept evidence by id only.
Download links are signed when a refund is read, never stored.
"""

import asyncio
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from storefront.core.config import Settings, get_settings
from storefront.core.errors import StorefrontError, ValidationError
from storefront.core.logging import get_logger
from storefront.core.security import Actor
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

EVIDENCE_PREFIX = "evidence:"
S3_SCHEME = "s3://"


class EvidenceType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Evidence(BaseModel):
    """
    Reference to an uploaded evidence file.

    ``url`` is the storage reference returned by the evidence store.
    ``download_url`` is only set on refunds handed out to callers.
    """

    id: str = Field(default_factory=lambda: f"ev-{secrets.token_hex(6)}")
    type: EvidenceType
    url: str
    file_name: str = ""
    file_size: int = Field(default=0, ge=0)
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    download_url: Optional[str] = None


class IssuedEvidence(Evidence):
    """Upload record kept under ``evidence:{id}``."""

    uploader_id: str

    def to_evidence(self) -> Evidence:
        return Evidence.model_validate(self.model_dump(exclude={"uploader_id"}))


class EvidenceStorageError(StorefrontError):
    """Raised when the object store rejects an upload."""

    status_code = 502
    default_user_message = "Gagal mengunggah bukti. Silakan coba lagi."


class EvidenceStorage(Protocol):
    async def store(self, data: bytes, content_type: str, file_name: str) -> str:
        ...

    def download_url(self, reference: str) -> str:
        ...


def evidence_type_for(content_type: str) -> EvidenceType:
    """
    Map a MIME type to an evidence type.

    Raises:
        ValidationError: If the content is neither an image nor a video
    """
    major = content_type.split("/", 1)[0].lower()
    try:
        return EvidenceType(major)
    except ValueError:
        raise ValidationError(
            f"Unsupported evidence content type {content_type}",
            user_message="Bukti harus berupa gambar atau video.",
            content_type=content_type,
        )


def check_evidence_size(data: bytes, max_bytes: int) -> None:
    """
    Raises:
        ValidationError: If the upload is empty or too large
    """
    if not data:
        raise ValidationError("Evidence upload is empty", user_message="File bukti kosong.")
    if len(data) > max_bytes:
        raise ValidationError(
            f"Evidence upload of {len(data)} bytes exceeds {max_bytes}",
            user_message=f"Ukuran file maksimal {max_bytes // (1024 * 1024)} MB.",
            size=len(data),
            max_bytes=max_bytes,
        )


def _object_key(file_name: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y/%m/%d")
    safe_name = "".join(c if c.isalnum() or c in "._-" else "_" for c in file_name) or "file"
    return f"refund-evidence/{stamp}/{secrets.token_hex(8)}-{safe_name}"


class InMemoryEvidenceStorage:
    """Keeps uploads in a dict and hands out ``memory://`` references."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def store(self, data: bytes, content_type: str, file_name: str) -> str:
        key = _object_key(file_name)
        self.objects[key] = (data, content_type)
        return f"memory://{key}"

    def download_url(self, reference: str) -> str:
        return reference


class S3EvidenceStorage:
    """Stores evidence in S3 and signs download URLs on demand."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        region_name: Optional[str] = None,
        url_expiry_seconds: Optional[int] = None,
        client: Any = None,
    ):
        settings = get_settings()
        self.bucket = bucket or settings.evidence_bucket
        self.url_expiry_seconds = url_expiry_seconds or settings.evidence_url_expiry_seconds
        self._client = client or boto3.client(
            "s3",
            region_name=region_name or settings.aws_region,
        )

        logger.info(
            "S3 evidence storage initialized",
            bucket=self.bucket,
            region=region_name or settings.aws_region,
        )

    def _upload(self, key: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    async def store(self, data: bytes, content_type: str, file_name: str) -> str:
        """Upload the file and return its ``s3://bucket/key`` reference."""
        key = _object_key(file_name)
        try:
            await asyncio.to_thread(self._upload, key, data, content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Evidence upload failed",
                bucket=self.bucket,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EvidenceStorageError(f"S3 upload failed: {e}", key=key) from e

        logger.info("Evidence uploaded", bucket=self.bucket, key=key, size=len(data))
        return f"{S3_SCHEME}{self.bucket}/{key}"

    def download_url(self, reference: str) -> str:
        """
        Presign a GET for an ``s3://`` reference.

        Other references are returned unchanged.

        Raises:
            EvidenceStorageError: If the URL cannot be signed
        """
        if not reference.startswith(S3_SCHEME):
            return reference

        bucket, _, key = reference[len(S3_SCHEME):].partition("/")
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self.url_expiry_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Evidence URL signing failed",
                bucket=bucket,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EvidenceStorageError(f"S3 presign failed: {e}", key=key) from e


def create_evidence_storage(settings: Optional[Settings] = None) -> EvidenceStorage:
    settings = settings or get_settings()
    if settings.evidence_backend == "s3":
        return S3EvidenceStorage(
            bucket=settings.evidence_bucket,
            region_name=settings.aws_region,
            url_expiry_seconds=settings.evidence_url_expiry_seconds,
        )
    return InMemoryEvidenceStorage()


class EvidenceService:
    """
    Uploads refund evidence and resolves the ids clients attach to refunds.

    Attributes:
        store: Key-value store holding the upload records
        storage: Object store for the file contents
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage: Optional[EvidenceStorage] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.storage = storage or create_evidence_storage(self.settings)

    @staticmethod
    def key(evidence_id: str) -> str:
        return f"{EVIDENCE_PREFIX}{evidence_id}"

    async def upload(
        self,
        actor: Actor,
        file_name: str,
        content_type: str,
        data: bytes,
    ) -> Evidence:
        """
        Store an image or video and record it as issued to ``actor``.

        Raises:
            ValidationError: If the file is empty, too large or not media
            EvidenceStorageError: If the object store rejects the upload
        """
        evidence_type = evidence_type_for(content_type)
        check_evidence_size(data, self.settings.evidence_max_bytes)

        reference = await self.storage.store(data, content_type, file_name)
        issued = IssuedEvidence(
            type=evidence_type,
            url=reference,
            file_name=file_name,
            file_size=len(data),
            uploader_id=actor.id,
        )
        await self.store.set(self.key(issued.id), issued.model_dump(mode="json"))

        logger.info(
            "Evidence issued",
            evidence_id=issued.id,
            user_id=actor.id,
            file_name=file_name,
            size=len(data),
            type=evidence_type.value,
        )
        return self.present(issued.to_evidence())

    async def resolve(self, evidence_ids: list[str], actor: Actor) -> list[Evidence]:
        """
        Load the evidence behind ids handed out by :meth:`upload`.

        Staff may attach any issued evidence; customers only their own.
        Repeated ids are attached once.

        Raises:
            ValidationError: If an id was never issued or belongs to someone else
        """
        resolved = []
        for evidence_id in dict.fromkeys(evidence_ids):
            document = await self.store.get(self.key(evidence_id))
            issued = IssuedEvidence.model_validate(document) if document else None
            if issued is None or not actor.can_access(issued.uploader_id):
                logger.warning(
                    "Unknown evidence reference rejected",
                    evidence_id=evidence_id,
                    user_id=actor.id,
                )
                raise ValidationError(
                    f"Evidence {evidence_id} was not issued to {actor.id}",
                    user_message="Bukti tidak ditemukan. Silakan unggah ulang.",
                    evidence_id=evidence_id,
                )
            resolved.append(issued.to_evidence())
        return resolved

    def present(self, evidence: Evidence) -> Evidence:
        """Copy of ``evidence`` with a fresh download link."""
        return evidence.model_copy(update={"download_url": self.storage.download_url(evidence.url)})
