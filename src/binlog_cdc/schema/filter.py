"""Include/exclude table rules."""

from __future__ import annotations

import re
from collections.abc import Iterable


def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    """Compile table patterns, rejecting invalid regular expressions."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            msg = f"invalid table pattern {pattern!r}: {exc}"
            raise ValueError(msg) from exc
    return tuple(compiled)


class TableFilter:
    """Ordered include and exclude patterns matched against ``schema.table``.

    Patterns are searched, not anchored, so ``mysql\\..*`` also matches
    ``tmysql.t``; anchor with ``^``/``$`` where that matters.  Exclusion always
    wins over inclusion, and when include patterns are configured a table that
    matches none of them is treated as excluded.
    """

    def __init__(
        self,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
    ) -> None:
        self._include = compile_patterns(include)
        self._exclude = compile_patterns(exclude)

    @property
    def include(self) -> tuple[str, ...]:
        return tuple(p.pattern for p in self._include)

    @property
    def exclude(self) -> tuple[str, ...]:
        return tuple(p.pattern for p in self._exclude)

    def is_excluded(self, schema: str, table: str) -> bool:
        key = f"{schema}.{table}"
        if any(p.search(key) for p in self._exclude):
            return True
        if self._include and not any(p.search(key) for p in self._include):
            return True
        return False

    def __repr__(self) -> str:
        return f"TableFilter(include={self.include!r}, exclude={self.exclude!r})"
