"""Version/variant selection filters."""

from dataclasses import dataclass

# Arguments that mean "everything"
MATCH_ALL_ARGS = ("", ".")


@dataclass(frozen=True)
class All:
    def __contains__(self, item: str) -> bool:
        return True


@dataclass(frozen=True)
class Subset:
    items: frozenset[str]

    def __contains__(self, item: str) -> bool:
        return item in self.items


Filter = All | Subset


def parse_filter(arg: str | None) -> Filter:
    """Turn a comma-separated CLI argument into a Filter.

    ``None``, ``""`` and ``"."`` all select everything.
    """
    if arg is None or arg.strip() in MATCH_ALL_ARGS:
        return All()
    items = frozenset(item.strip() for item in arg.split(",") if item.strip())
    if not items:
        return All()
    return Subset(items)


def should_update(item: str, selection: Filter) -> bool:
    """Exact-match membership; All matches every item."""
    return item in selection
