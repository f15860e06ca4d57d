from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, MutableMapping, Optional, Tuple, Union

HeaderValue = Union[str, List[str]]


class HeaderMap(MutableMapping[str, List[str]]):
    """Ordered, case-insensitive, multi-valued header container.

    Lookups ignore case. The casing of the first occurrence of a name is kept
    for iteration, and names differing only by case share one entry.
    """

    def __init__(self, items: Optional[Iterable[Tuple[str, str]]] = None) -> None:
        self._names: Dict[str, str] = {}
        self._values: Dict[str, List[str]] = {}
        for name, value in items or ():
            self.add(name, value)

    def __getitem__(self, name: str) -> List[str]:
        return list(self._values[name.lower()])

    def __setitem__(self, name: str, value: HeaderValue) -> None:
        values = [value] if isinstance(value, str) else [str(item) for item in value]
        key = name.lower()
        self._names.setdefault(key, name)
        self._values[key] = values

    def __delitem__(self, name: str) -> None:
        key = name.lower()
        del self._values[key]
        del self._names[key]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names.values()))

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __repr__(self) -> str:
        return f"HeaderMap({list(self.items_flat())!r})"

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        self._names.setdefault(key, name)
        self._values.setdefault(key, []).append(str(value))

    def get_all(self, name: str) -> List[str]:
        return list(self._values.get(name.lower(), []))

    def discard(self, name: str) -> None:
        if name in self:
            del self[name]

    def items_flat(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(name, value)`` pairs, one per value, in insertion order."""
        for key, display in list(self._names.items()):
            for value in self._values.get(key, []):
                yield display, value

    def copy(self) -> "HeaderMap":
        return HeaderMap(self.items_flat())

    def to_trace_dict(self) -> Dict[str, HeaderValue]:
        """Collapse to ``name -> value``, keeping a list only for repeated headers."""
        result: Dict[str, HeaderValue] = {}
        for key, display in self._names.items():
            values = self._values[key]
            if len(values) == 1:
                result[display] = values[0]
            elif not values:
                result[display] = ""
            else:
                result[display] = list(values)
        return result
