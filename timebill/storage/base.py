from abc import ABC, abstractmethod

from timebill.settings import settings

INVOICE_ARTIFACTS = "invoices"
BILL_ARTIFACTS = "bills"
ARTIFACT_KINDS = (INVOICE_ARTIFACTS, BILL_ARTIFACTS)


def artifact_key(kind: str, uuid: str, prefix: str | None = None) -> str:
    """Storage key of a rendered invoice or bill: ``[<prefix>/]<kind>/<uuid>.pdf``.

    ``prefix`` defaults to the configured storage prefix.
    """
    if kind not in ARTIFACT_KINDS:
        raise ValueError(f"Unknown artifact kind: {kind}")
    if not uuid:
        raise ValueError("Artifact key needs the document uuid")
    prefix = (settings.storage_prefix if prefix is None else prefix).strip("/")
    return "/".join(part for part in (prefix, kind, f"{uuid}.pdf") if part)


class StorageBackend(ABC):
    """Durable sink for rendered invoice and bill artifacts."""

    @abstractmethod
    def save(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Save data and return the path/URL recorded on the invoice or bill."""
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Retrieve a stored artifact by key."""
        ...

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Return a presigned URL (S3) or absolute file path (local)."""
        ...
