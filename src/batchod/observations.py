#########################################################################################
##
##                        TRACKING OBSERVATION CONTAINERS
##                              (observations.py)
##
##          Observable / link-end keys and the ordered observation collection
##          whose iteration order fixes the row layout of residuals, Jacobian
##          and weights.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import enum
import functools
from typing import Iterator, Mapping

import numpy as np


# KEYS ==================================================================================

class ObservableType(enum.IntEnum):
    """Category of tracking measurement. The integer value fixes the ordering."""

    ONE_WAY_RANGE = 1
    N_WAY_RANGE = 2
    ONE_WAY_DOPPLER = 3
    TWO_WAY_DOPPLER = 4
    ANGULAR_POSITION = 5
    POSITION = 6
    VELOCITY = 7
    EULER_ANGLES = 8


class LinkEndType(enum.IntEnum):
    """Role of a participating endpoint in a tracking link."""

    TRANSMITTER = 1
    REFLECTOR = 2
    RECEIVER = 3
    OBSERVED_BODY = 4


@functools.total_ordering
class LinkEnds:
    """Immutable set of link ends participating in one tracking link.

    Maps each :class:`LinkEndType` to a ``(body, reference_point)`` pair.
    Instances are hashable and totally ordered, so they can key dictionaries
    and be sorted reproducibly.

    Parameters
    ----------
    ends : mapping
        ``{LinkEndType: (body, reference_point)}``. A plain string is read
        as ``(body, "")``.

    Example
    -------
    .. code-block:: python

        link = LinkEnds({
            LinkEndType.TRANSMITTER: ("Earth", "Graz"),
            LinkEndType.RECEIVER: "Delfi-C3",
        })
        link[LinkEndType.RECEIVER]   # ("Delfi-C3", "")
    """

    __slots__ = ("_ends",)

    def __init__(self, ends: Mapping[LinkEndType, str | tuple[str, str]]):
        if not ends:
            raise ValueError("LinkEnds requires at least one link end")

        items = []
        for end_type, end_id in dict(ends).items():
            if isinstance(end_id, str):
                end_id = (end_id, "")
            body, point = end_id
            items.append((LinkEndType(end_type), (str(body), str(point))))

        self._ends = tuple(sorted(items))


    def __getitem__(self, end_type: LinkEndType) -> tuple[str, str]:
        for key, end_id in self._ends:
            if key == end_type:
                return end_id
        raise KeyError(end_type)


    def __contains__(self, end_type: object) -> bool:
        return any(key == end_type for key, _ in self._ends)


    def __iter__(self) -> Iterator[LinkEndType]:
        return (key for key, _ in self._ends)


    def __len__(self) -> int:
        return len(self._ends)


    def items(self) -> tuple[tuple[LinkEndType, tuple[str, str]], ...]:
        return self._ends


    def __hash__(self) -> int:
        return hash(self._ends)


    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LinkEnds):
            return NotImplemented
        return self._ends == other._ends


    def __lt__(self, other: "LinkEnds") -> bool:
        if not isinstance(other, LinkEnds):
            return NotImplemented
        return self._ends < other._ends


    def __repr__(self) -> str:
        parts = []
        for end_type, (body, point) in self._ends:
            label = f"{body}/{point}" if point else body
            parts.append(f"{end_type.name}={label}")
        return f"LinkEnds({', '.join(parts)})"


# OBSERVATION SET =======================================================================

class ObservationSet:
    """Observed values of one observable type over one set of link ends.

    Stores the observation time tags and values, together with the link end
    whose clock the time tags refer to. Both arrays are read-only after
    construction.

    Parameters
    ----------
    observable_type : ObservableType
        Category of the measurement.
    link_ends : LinkEnds
        Participating endpoints.
    times : array_like
        Observation time tags, shape (n,).
    values : array_like
        Observed values, shape (n,).
    reference_link_end : LinkEndType
        Link end at which the time tags are defined. Must be part of
        ``link_ends``.
    name : str, optional
        Label used for display and plotting.
    """

    def __init__(
        self,
        observable_type: ObservableType,
        link_ends: LinkEnds,
        times: np.ndarray,
        values: np.ndarray,
        reference_link_end: LinkEndType = LinkEndType.RECEIVER,
        name: str | None = None,
    ):
        t = np.array(times, dtype=float).reshape(-1)
        y = np.array(values, dtype=float).reshape(-1)

        if t.size == 0:
            raise ValueError("ObservationSet requires at least 1 observation")
        if t.size != y.size:
            raise ValueError(
                f"ObservationSet requires times and values with same length, "
                f"got {t.size} and {y.size}"
            )
        if not (np.all(np.isfinite(t)) and np.all(np.isfinite(y))):
            raise ValueError("ObservationSet requires finite times and values")

        if not isinstance(link_ends, LinkEnds):
            link_ends = LinkEnds(link_ends)

        reference_link_end = LinkEndType(reference_link_end)
        if reference_link_end not in link_ends:
            raise ValueError(
                f"reference link end {reference_link_end.name} is not part of {link_ends!r}"
            )

        t.flags.writeable = False
        y.flags.writeable = False

        self.observable_type = ObservableType(observable_type)
        self.link_ends = link_ends
        self.times = t
        self.values = y
        self.reference_link_end = reference_link_end
        self.name = name if name is not None else self.observable_type.name.lower()


    @property
    def key(self) -> tuple[ObservableType, LinkEnds]:
        """``(observable_type, link_ends)`` ordering key."""
        return self.observable_type, self.link_ends


    @property
    def size(self) -> int:
        """Number of observations."""
        return self.values.size


    def __repr__(self) -> str:
        return (
            f"ObservationSet({self.observable_type.name}, {self.link_ends!r}, "
            f"n={self.size}, reference={self.reference_link_end.name})"
        )


    def plot(self, ax=None, *, marker: str = "o", markersize: float = 4.0):
        """Plot the observed values over time.

        Parameters
        ----------
        ax : matplotlib.axes.Axes, optional
            Target axes; a new figure is created when omitted.
        marker : str, optional
            Marker style passed to ``ax.plot``.
        markersize : float, optional
            Marker size passed to ``ax.plot``.

        Returns
        -------
        ax : matplotlib.axes.Axes
        """
        import matplotlib.pyplot as plt

        if ax is None:
            _, ax = plt.subplots(figsize=(8, 4))

        ax.plot(self.times, self.values, marker=marker, markersize=markersize,
                linestyle="none", label=self.name)
        ax.set_xlabel("Time")
        ax.set_ylabel(self.observable_type.name.lower())
        ax.set_title(f"{self.observable_type.name}: {self.link_ends!r}")
        ax.grid(True)
        ax.legend()
        return ax


# OBSERVATION COLLECTION ================================================================

class ObservationCollection:
    """Ordered collection of observation sets used in one estimation run.

    Sets are sorted by ``(observable_type, link_ends)``. This order is the
    single source of truth for the row layout of the residual vector, the
    Jacobian and the weight vector: set *k* occupies ``row_slices()[k]``.

    Parameters
    ----------
    observation_sets : iterable of ObservationSet
        Sets to collect; each ``(observable_type, link_ends)`` key may appear
        only once.
    """

    def __init__(self, observation_sets):
        sets = list(observation_sets)

        seen = set()
        for obs in sets:
            if not isinstance(obs, ObservationSet):
                raise TypeError(
                    f"expected ObservationSet, got {type(obs).__name__}"
                )
            if obs.key in seen:
                raise ValueError(
                    f"duplicate observation set for {obs.observable_type.name} "
                    f"with {obs.link_ends!r}"
                )
            seen.add(obs.key)

        self._sets = tuple(sorted(sets, key=lambda s: s.key))

        offsets = np.cumsum([0] + [s.size for s in self._sets])
        self._slices = tuple(
            slice(int(start), int(stop)) for start, stop in zip(offsets[:-1], offsets[1:])
        )


    @classmethod
    def from_mapping(cls, mapping) -> "ObservationCollection":
        """Build from ``{observable: {link_ends: (values, times, reference)}}``."""
        sets = []
        for observable_type, per_link in mapping.items():
            for link_ends, (values, times, reference) in per_link.items():
                sets.append(ObservationSet(
                    observable_type, link_ends, times, values, reference,
                ))
        return cls(sets)


    @classmethod
    def from_time_keyed(cls, mapping) -> "ObservationCollection":
        """Build from ``{observable: {link_ends: ({time: value}, reference)}}``.

        The time-keyed values are split into ascending time and value arrays.
        """
        sets = []
        for observable_type, per_link in mapping.items():
            for link_ends, (time_series, reference) in per_link.items():
                times = sorted(time_series)
                values = [time_series[t] for t in times]
                sets.append(ObservationSet(
                    observable_type, link_ends, times, values, reference,
                ))
        return cls(sets)


    def __iter__(self) -> Iterator[ObservationSet]:
        return iter(self._sets)


    def __len__(self) -> int:
        return len(self._sets)


    def __getitem__(self, key: tuple[ObservableType, LinkEnds]) -> ObservationSet:
        for obs in self._sets:
            if obs.key == key:
                return obs
        raise KeyError(key)


    def keys(self) -> list[tuple[ObservableType, LinkEnds]]:
        """Ordering keys in iteration order."""
        return [obs.key for obs in self._sets]


    @property
    def observable_types(self) -> list[ObservableType]:
        """Distinct observable types, in order."""
        return sorted({obs.observable_type for obs in self._sets})


    @property
    def total_observations(self) -> int:
        """Total number of observations over all sets."""
        return sum(obs.size for obs in self._sets)


    def observations_per_observable(self) -> dict[ObservableType, int]:
        """Number of observations per observable type."""
        counts: dict[ObservableType, int] = {}
        for obs in self._sets:
            counts[obs.observable_type] = counts.get(obs.observable_type, 0) + obs.size
        return counts


    def observations_per_link_ends(self, observable_type: ObservableType) -> list[int]:
        """Observation counts of each link-end group of one observable, in order."""
        return [obs.size for obs in self._sets if obs.observable_type == observable_type]


    def row_slices(self) -> list[slice]:
        """Row range of each set in the stacked residual vector."""
        return list(self._slices)


    def concatenated_values(self) -> np.ndarray:
        """All observed values stacked in row order."""
        if not self._sets:
            return np.array([], dtype=float)
        return np.concatenate([obs.values for obs in self._sets])


    def __repr__(self) -> str:
        return (
            f"ObservationCollection(sets={len(self._sets)}, "
            f"observations={self.total_observations})"
        )
