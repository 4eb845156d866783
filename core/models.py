"""
core/models.py -- Domain dataclasses for the tool catalog.

Pure data containers. Validation lives in core/validation.py, persistence in
catalog/store.py, and the HTTP contract in api/models.py.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Domain limits
# ---------------------------------------------------------------------------

MAX_CATEGORIES = 50
MAX_APPS = 500

MAX_NAME_LENGTH = 100
MAX_CATEGORY_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 500
MAX_HREF_LENGTH = 500
MAX_TAG_LENGTH = 20
MAX_TAGS = 10
MAX_ICON_TEXT_LENGTH = 100


@dataclass
class App:
    name: str
    href: str
    category: str
    icon: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class Catalog:
    categories: list[str] = field(default_factory=list)
    apps: list[App] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def stats(self) -> dict[str, int]:
        return {"categories": len(self.categories), "apps": len(self.apps)}

    def orphaned_categories(self) -> list[str]:
        """Category names referenced by apps but missing from categories, in first-seen order."""
        known = set(self.categories)
        seen: set[str] = set()
        result: list[str] = []
        for app in self.apps:
            if app.category not in known and app.category not in seen:
                seen.add(app.category)
                result.append(app.category)
        return result
