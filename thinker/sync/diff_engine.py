"""Sorted merge-join diff between two ordered readers."""

from typing import Any, AsyncIterator, Callable

import structlog

from thinker.errors import Phase, TableOperationError, ThinkerError
from thinker.models.value import compare_values, values_equal
from thinker.sync.models import Delete, DiffAnomaly, DiffOperation, Insert, Update
from thinker.sync.reader import OrderedBatchReader

log = structlog.stdlib.get_logger()


class MergeDiffEngine:
    """Computes the operations that turn the destination into the source.

    Both readers must be ordered by the same key under compare_values. The
    engine walks them in lockstep, holding one lookahead row per side, so the
    work is O(n + m) reads and no table is ever loaded whole. It performs no
    writes and calls no observers; it only yields operations.
    """

    def __init__(
        self,
        source: OrderedBatchReader,
        destination: OrderedBatchReader,
        equal: Callable[[Any, Any], bool] = values_equal,
    ):
        """
        Initialize the engine.

        Args:
            source: Reader over the table to copy from
            destination: Reader over the table to converge
            equal: Document equality used for rows present on both sides
        """
        self._source = source
        self._destination = destination
        self._equal = equal
        self.anomalies: list[DiffAnomaly] = []
        self.compared = 0

    @property
    def scanned_source(self) -> int:
        return self._source.rows_read

    @property
    def scanned_destination(self) -> int:
        return self._destination.rows_read

    def _guarded(self, check: Callable[[Any, Any], Any], left: Any, right: Any, key: Any) -> Any:
        try:
            return check(left, right)
        except ThinkerError:
            raise
        except Exception as e:
            raise TableOperationError(
                f"comparing key {key!r} failed: {type(e).__name__}: {e}",
                table=self._source.table,
                phase=Phase.COMPARE,
            ) from e

    async def diff(self) -> AsyncIterator[DiffOperation]:
        """Yield Insert, Update and Delete operations in key order."""
        source, destination = self._source, self._destination

        while True:
            src = await source.peek()
            dst = await destination.peek()

            if src is None and dst is None:
                break

            if dst is None:
                await source.advance()
                yield Insert(doc=src.doc)
                continue

            if src is None:
                await destination.advance()
                yield Delete(key=dst.key)
                continue

            order = self._guarded(compare_values, src.key, dst.key, src.key)
            self.compared += 1

            if order is None:
                # No order exists between the keys, so neither can be matched
                # against later rows. Skip both and report.
                anomaly = DiffAnomaly(source_key=src.key, destination_key=dst.key)
                self.anomalies.append(anomaly)
                log.warning(
                    "incomparable_keys_skipped",
                    table=source.table,
                    source_key=repr(src.key),
                    destination_key=repr(dst.key),
                )
                await source.advance()
                await destination.advance()
            elif order < 0:
                await source.advance()
                yield Insert(doc=src.doc)
            elif order > 0:
                await destination.advance()
                yield Delete(key=dst.key)
            else:
                await source.advance()
                await destination.advance()
                if not self._guarded(self._equal, src.doc, dst.doc, src.key):
                    yield Update(key=src.key, doc=src.doc)

        log.debug(
            "diff_completed",
            table=source.table,
            source_rows=self.scanned_source,
            destination_rows=self.scanned_destination,
            compared=self.compared,
            anomalies=len(self.anomalies),
        )
