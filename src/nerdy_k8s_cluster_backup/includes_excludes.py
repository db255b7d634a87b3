from __future__ import annotations

from typing import Callable, Iterable

WILDCARD = "*"


class IncludesExcludes:
    """An include/exclude list over string identifiers.

    An empty include list, or one containing ``*``, includes everything that is
    not explicitly excluded. Exclusion always wins.
    """

    def __init__(self) -> None:
        self._includes: list[str] = []
        self._excludes: list[str] = []

    def includes(self, *items: str) -> IncludesExcludes:
        for item in items:
            if item not in self._includes:
                self._includes.append(item)
        return self

    def excludes(self, *items: str) -> IncludesExcludes:
        for item in items:
            if item not in self._excludes:
                self._excludes.append(item)
        return self

    def get_includes(self) -> list[str]:
        return list(self._includes)

    def get_excludes(self) -> list[str]:
        return list(self._excludes)

    def should_include(self, item: str) -> bool:
        if item in self._excludes or WILDCARD in self._excludes:
            return False
        return self.includes_everything() or item in self._includes

    def includes_everything(self) -> bool:
        return not self._includes or WILDCARD in self._includes

    def includes_string(self) -> str:
        if not self._includes:
            return WILDCARD
        return ", ".join(self._includes)

    def excludes_string(self) -> str:
        if not self._excludes:
            return "<none>"
        return ", ".join(self._excludes)

    def __repr__(self) -> str:
        return f"IncludesExcludes(includes=[{self.includes_string()}], excludes=[{self.excludes_string()}])"


def new_includes_excludes(includes: Iterable[str] = (), excludes: Iterable[str] = ()) -> IncludesExcludes:
    return IncludesExcludes().includes(*includes).excludes(*excludes)


def generate_includes_excludes(
    includes: Iterable[str],
    excludes: Iterable[str],
    map_func: Callable[[str], str],
) -> IncludesExcludes:
    """Build an IncludesExcludes after mapping every entry through map_func.

    ``*`` is kept as-is. Entries that map to an empty string are dropped.
    """
    result = IncludesExcludes()
    for item in includes:
        if item == WILDCARD:
            result.includes(item)
            continue
        key = map_func(item)
        if key:
            result.includes(key)

    for item in excludes:
        if item == WILDCARD:
            result.excludes(item)
            continue
        key = map_func(item)
        if key:
            result.excludes(key)

    return result
