from typing import Any, Callable, Iterable, List

import pandas as pd


class ControlPool:
    """
    Candidate controls for one matching run.

    A frozen pool is shared read-only by every case (incidence density).
    An unfrozen pool shrinks as controls are assigned (exact matching); it is
    owned by a single matching unit for the whole run.
    """

    def __init__(self, controls: pd.DataFrame, id_field: str, frozen: bool = False):
        self.id_field = id_field
        self.frozen = frozen
        # Private copy: the caller's table is never mutated
        self._frame = controls.reset_index(drop=True).copy()

    def __len__(self) -> int:
        return len(self._frame)

    @property
    def ids(self) -> List[Any]:
        return self._frame[self.id_field].tolist()

    def eligible(self, predicate: Callable[[pd.DataFrame], pd.Series]) -> pd.DataFrame:
        """Return the current members satisfying ``predicate``, in pool order."""
        if self._frame.empty:
            return self._frame
        return self._frame[predicate(self._frame)]

    def remove(self, selected: Iterable[Any]) -> None:
        """Permanently drop the given control identifiers from the pool."""
        if self.frozen:
            raise RuntimeError("Cannot remove controls from a frozen pool")
        selected = list(selected)
        if not selected:
            return
        keep = ~self._frame[self.id_field].isin(selected)
        self._frame = self._frame[keep]
