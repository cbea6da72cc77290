from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .domain import ValidationError

SORT_OPERATORS = ("eq", "lt", "lte", "gt", "gte", "begins_with", "between")


@dataclass(frozen=True)
class KeySchema:
    """Names of the primary-key attributes of a table."""

    partition: str
    sort: Optional[str] = None

    @property
    def attributes(self) -> Tuple[str, ...]:
        return (self.partition, self.sort) if self.sort else (self.partition,)

    def validate_key(self, key: Any) -> Dict[str, str]:
        """Return a clean copy of ``key`` or raise ValidationError."""
        if not isinstance(key, Mapping):
            raise ValidationError(f"Key must be a mapping, got {type(key).__name__}")
        names = set(self.attributes)
        missing = names - set(key)
        extra = set(key) - names
        if missing or extra:
            raise ValidationError(
                f"Key must have exactly {list(self.attributes)}, "
                f"missing {sorted(missing)}, unexpected {sorted(extra)}"
            )
        for name in self.attributes:
            value = key[name]
            if not isinstance(value, str) or not value:
                raise ValidationError(f"Key attribute {name!r} must be a non-empty string")
        return {name: key[name] for name in self.attributes}

    def key_of(self, item: Any) -> Dict[str, str]:
        """Extract the primary key of an item."""
        if not isinstance(item, Mapping):
            raise ValidationError(f"Item must be a mapping, got {type(item).__name__}")
        missing = [name for name in self.attributes if name not in item]
        if missing:
            raise ValidationError(f"Item is missing key attributes {missing}")
        return self.validate_key({name: item[name] for name in self.attributes})

    def position(self, key: Mapping[str, str]) -> Tuple[str, str]:
        """(partition, sort) pair used to order items; sort is '' without a sort key."""
        return key[self.partition], key[self.sort] if self.sort else ""


@dataclass(frozen=True)
class SortCondition:
    op: str
    value: str
    upper: Optional[str] = None

    def __post_init__(self):
        if self.op not in SORT_OPERATORS:
            raise ValidationError(f"Unknown sort operator {self.op!r}")
        if not isinstance(self.value, str):
            raise ValidationError("Sort condition value must be a string")
        if self.op == "between":
            if not isinstance(self.upper, str):
                raise ValidationError("'between' needs an upper bound")
            if self.upper < self.value:
                raise ValidationError("'between' bounds are reversed")

    @classmethod
    def eq(cls, value: str) -> "SortCondition":
        return cls("eq", value)

    @classmethod
    def begins_with(cls, prefix: str) -> "SortCondition":
        return cls("begins_with", prefix)

    @classmethod
    def between(cls, low: str, high: str) -> "SortCondition":
        return cls("between", low, high)

    def matches(self, candidate: str) -> bool:
        if self.op == "eq":
            return candidate == self.value
        if self.op == "lt":
            return candidate < self.value
        if self.op == "lte":
            return candidate <= self.value
        if self.op == "gt":
            return candidate > self.value
        if self.op == "gte":
            return candidate >= self.value
        if self.op == "begins_with":
            return candidate.startswith(self.value)
        return self.value <= candidate <= self.upper


@dataclass(frozen=True)
class KeyCondition:
    """Partition equality plus an optional sort-key condition."""

    partition: str
    sort: Optional[SortCondition] = None
    descending: bool = False

    def __post_init__(self):
        if not isinstance(self.partition, str) or not self.partition:
            raise ValidationError("Query partition value must be a non-empty string")
