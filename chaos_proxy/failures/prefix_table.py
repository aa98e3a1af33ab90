"""
Path-prefix failure table.

The table is parsed once from a ``prefix:code;prefix:code;...`` string and
is read-only afterwards. Matching scans prefixes in declaration order and
returns the first hit, so with overlapping prefixes (``/a`` and ``/a/b``)
the one declared first wins.
"""

from typing import Dict, Iterator, Mapping, Optional, Tuple

from chaos_proxy.errors import FormatError

ENTRY_SEPARATOR = ";"
FIELD_SEPARATOR = ":"


class PrefixFailureTable:
    """Immutable mapping of path prefix to the status code used to fail it."""

    __slots__ = ("_codes",)

    def __init__(self, codes: Optional[Mapping[str, int]] = None):
        self._codes: Dict[str, int] = dict(codes or {})

    @classmethod
    def parse(cls, spec: str) -> "PrefixFailureTable":
        """
        Parse ``prefix:code;prefix:code;...``.

        An empty string yields an empty table. Duplicate prefixes keep the
        last code given.

        Raises:
            FormatError: an entry does not have exactly two ``:`` separated
                fields, its prefix is empty, or its code is not an integer
        """
        if not spec:
            return cls()

        codes: Dict[str, int] = {}
        for entry in spec.split(ENTRY_SEPARATOR):
            pair = entry.split(FIELD_SEPARATOR)
            if len(pair) != 2:
                raise FormatError(f"decoding {spec!r}: bad entry {entry!r}")
            prefix, raw_code = pair
            if not prefix:
                raise FormatError(f"decoding {spec!r}: empty prefix in {entry!r}")
            try:
                code = int(raw_code)
            except ValueError as e:
                raise FormatError(
                    f"cannot convert {raw_code!r} to int in entry {entry!r}"
                ) from e
            codes[prefix] = code
        return cls(codes)

    def match(self, path: str) -> Tuple[int, bool]:
        for prefix, code in self._codes.items():
            if path.startswith(prefix):
                return code, True
        return 0, False

    def items(self):
        return self._codes.items()

    def __iter__(self) -> Iterator[str]:
        return iter(self._codes)

    def __len__(self) -> int:
        return len(self._codes)

    def __bool__(self) -> bool:
        return bool(self._codes)

    def __contains__(self, prefix: object) -> bool:
        return prefix in self._codes

    def __getitem__(self, prefix: str) -> int:
        return self._codes[prefix]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrefixFailureTable):
            return NotImplemented
        return self._codes == other._codes

    def __hash__(self) -> int:
        return hash(frozenset(self._codes.items()))

    def __str__(self) -> str:
        return ENTRY_SEPARATOR.join(
            f"{prefix}{FIELD_SEPARATOR}{code}" for prefix, code in self._codes.items()
        )

    def __repr__(self) -> str:
        return f"PrefixFailureTable({self._codes!r})"
