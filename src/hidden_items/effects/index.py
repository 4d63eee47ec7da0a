from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Tuple

from hidden_items.effects.records import EffectInstance

GroupKey = Tuple[str, str, int]


class EffectIndex:
    """Canonical table of effect instances keyed by carrier key."""

    def __init__(self) -> None:
        self._instances: Dict[str, EffectInstance] = {}

    def insert(self, key: str, instance: EffectInstance) -> None:
        existing = self._instances.get(key)
        if existing is not None and existing is not instance:
            raise ValueError(f"Carrier key '{key}' already belongs to another instance")
        instance.carrier_key = key
        self._instances[key] = instance

    def pop(self, key: str) -> EffectInstance | None:
        return self._instances.pop(key, None)

    def get(self, key: str) -> EffectInstance | None:
        return self._instances.get(key)

    def has(self, key: str) -> bool:
        return key in self._instances

    def items(self) -> List[Tuple[str, EffectInstance]]:
        """A copy, so callers may mutate the index while iterating."""
        return list(self._instances.items())

    def clear(self) -> None:
        self._instances.clear()

    def __len__(self) -> int:
        return len(self._instances)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._instances))


class GroupIndex:
    """Secondary index: (owner key, group, item) -> carrier keys in insertion order.

    Buckets are created on insert and dropped as soon as they empty, so a
    missing bucket always means a count of zero.
    """

    def __init__(self) -> None:
        self._buckets: Dict[GroupKey, Dict[str, None]] = {}

    @staticmethod
    def key_for(instance: EffectInstance) -> GroupKey:
        return (instance.owner_key, instance.group, instance.item_id)

    def add(self, instance: EffectInstance) -> None:
        if instance.carrier_key is None:
            return
        bucket = self._buckets.setdefault(self.key_for(instance), {})
        bucket[instance.carrier_key] = None

    def discard(self, instance: EffectInstance, carrier_key: str | None = None) -> None:
        key = carrier_key if carrier_key is not None else instance.carrier_key
        if key is None:
            return
        group_key = self.key_for(instance)
        bucket = self._buckets.get(group_key)
        if bucket is None or key not in bucket:
            # The owner key may have gone stale; sweep every bucket instead.
            self.purge_key(key)
            return
        del bucket[key]
        if not bucket:
            del self._buckets[group_key]

    def purge_key(self, carrier_key: str) -> None:
        for group_key, bucket in list(self._buckets.items()):
            if carrier_key in bucket:
                del bucket[carrier_key]
                if not bucket:
                    del self._buckets[group_key]

    def keys_for(self, owner_key: str, group: str, item_id: int) -> List[str]:
        return list(self._buckets.get((owner_key, group, item_id), ()))

    def count(self, owner_key: str, group: str, item_id: int) -> int:
        return len(self._buckets.get((owner_key, group, item_id), ()))

    def stacks(self, owner_key: str, group: str) -> Dict[int, int]:
        return {
            item_id: len(bucket)
            for (bucket_owner, bucket_group, item_id), bucket in self._buckets.items()
            if bucket_owner == owner_key and bucket_group == group and bucket
        }

    def clear(self) -> None:
        self._buckets.clear()

    def rebuild(self, instances: Iterable[EffectInstance]) -> None:
        self.clear()
        for instance in instances:
            self.add(instance)

    def consistent_with(self, effects: EffectIndex) -> bool:
        """True if every indexed carrier key maps to a matching instance."""
        for group_key, bucket in self._buckets.items():
            if not bucket:
                return False
            for carrier_key in bucket:
                instance = effects.get(carrier_key)
                if instance is None or self.key_for(instance) != group_key:
                    return False
        return True
