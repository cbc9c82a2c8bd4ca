"""Catalog data model.

Records are built in bulk by one parse pass and never mutated afterwards;
a refresh replaces the whole snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServiceRecord:
    """One catalogued free-tier offering."""
    name: str
    url: str
    description: str
    free_tier: str
    category: str
    limitations: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive tag membership."""
        if not self.tags:
            return False
        wanted = tag.lower()
        return any(t.lower() == wanted for t in self.tags)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "free_tier": self.free_tier,
            "category": self.category,
        }
        if self.limitations is not None:
            result["limitations"] = self.limitations
        if self.tags:
            result["tags"] = list(self.tags)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceRecord":
        """Create ServiceRecord from dictionary."""
        tags = data.get("tags")
        return cls(
            name=data["name"],
            url=data["url"],
            description=data.get("description", ""),
            free_tier=data.get("free_tier") or data.get("description", ""),
            category=data["category"],
            limitations=data.get("limitations"),
            tags=tuple(dict.fromkeys(tags)) if tags else None,
        )


@dataclass(frozen=True)
class Category:
    """Named group of services, in document order."""
    name: str
    services: Tuple[ServiceRecord, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "services": [service.to_dict() for service in self.services],
        }


@dataclass(frozen=True)
class CatalogSnapshot:
    """One immutable generation of the catalog.

    ``services`` is always the concatenation of every category's services,
    in source order. Build snapshots through :meth:`from_categories` so the
    flat list can never drift from the grouped one.
    """
    categories: Tuple[Category, ...]
    services: Tuple[ServiceRecord, ...]
    last_updated: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_categories(cls, categories: Iterable[Category],
                        last_updated: Optional[datetime] = None) -> "CatalogSnapshot":
        categories = tuple(c for c in categories if c.services)
        services = tuple(s for c in categories for s in c.services)
        return cls(
            categories=categories,
            services=services,
            last_updated=last_updated or _utcnow(),
        )

    @property
    def category_names(self) -> Sequence[str]:
        return [c.name for c in self.categories]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "categories": [c.to_dict() for c in self.categories],
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogSnapshot":
        """Rebuild a snapshot from :meth:`to_dict` output."""
        categories = []
        for raw_category in data.get("categories", []):
            name = raw_category["name"]
            services = tuple(
                ServiceRecord.from_dict({**raw_service, "category": raw_service.get("category", name)})
                for raw_service in raw_category.get("services", [])
            )
            categories.append(Category(name=name, services=services))

        last_updated = data.get("last_updated")
        return cls.from_categories(
            categories,
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )
