"""
Data model for the AMI provenance scan.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Categories and visibility values
# ---------------------------------------------------------------------------

VERIFIED = "Verified"
UNVERIFIED = "Unverified"
PRIVATE = "Private"
UNKNOWN = "Unknown"
PUBLIC = "Public"

# Report order used by the summary and the export.
CATEGORIES = (VERIFIED, PRIVATE, UNKNOWN, UNVERIFIED)

# Reserved owner aliases.
AMAZON_ALIAS = "amazon"
SELF_ALIAS = "self"


@dataclass(frozen=True)
class Instance:
    instance_id: str
    region: str
    image_id: str


@dataclass(frozen=True)
class ImageMetadata:
    public: bool
    owner_alias: str | None = None  # "amazon" | "self" | anything else | None
    owner_id: str | None = None
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ImageRecord:
    image_id: str
    region: str  # first region the image was observed in
    owner_alias: str
    owner_id: str
    name: str
    description: str
    visibility: str  # Public | Private | Unknown
    category: str  # Verified | Unverified | Private | Unknown

    @classmethod
    def build(
        cls,
        image_id: str,
        region: str,
        metadata: ImageMetadata | None,
        category: str,
    ) -> "ImageRecord":
        """Create the record for a classified image.

        Unresolved images carry ``"Unknown"`` in every informational field.
        """
        if category not in CATEGORIES:
            raise ValueError(f"invalid category: {category!r}")
        if metadata is None:
            return cls(
                image_id=image_id,
                region=region,
                owner_alias=UNKNOWN,
                owner_id=UNKNOWN,
                name=UNKNOWN,
                description=UNKNOWN,
                visibility=UNKNOWN,
                category=category,
            )
        return cls(
            image_id=image_id,
            region=region,
            owner_alias=metadata.owner_alias or "",
            owner_id=metadata.owner_id or UNKNOWN,
            name=metadata.name or "",
            description=metadata.description or "",
            visibility=PUBLIC if metadata.public else PRIVATE,
            category=category,
        )
