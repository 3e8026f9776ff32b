import dataclasses as dc
from typing import Self


@dc.dataclass(slots=True)
class Stats:
    '''
    Network counters of a single transport instance.

    Only the owning transport and its retry policy mutate these fields;
    everything else should work on a `copy()`.
    '''
    net_retries: int = 0
    net_total_time_ms: float = 0.0

    def aggregate(self, other: 'Stats | None') -> Self:
        if other is not None:
            self.net_retries += other.net_retries
            self.net_total_time_ms += other.net_total_time_ms
        return self

    def copy(self) -> 'Stats':
        return dc.replace(self)
