"""Position Reconciliation: matching engine."""

from __future__ import annotations

import hashlib
import logging
from decimal import Decimal
from typing import Optional

from .breaks import BreakClassifier
from .config import ReconciliationConfig
from .feeds import PositionRecord, PositionSnapshot
from .models import Break, PositionMatch, ReconciliationResult, make_break_id

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class PositionMatcher:
    """Matches a reference snapshot against a comparison snapshot.

    Records are joined on (owner, instrument). A pair is a match when both
    the quantity and the value variance are within tolerance of the
    reference side; anything else is a break. Reference records missing
    from the comparison side are compared against zero. The run is a pure
    function of the two snapshots.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None) -> None:
        self.config = config or ReconciliationConfig()
        self.classifier = BreakClassifier(self.config.tolerances)

    def within_tolerance(self, variance: Decimal, reference: Decimal) -> bool:
        return abs(variance) <= self.config.tolerances.match_tolerance_pct * abs(reference)

    def reconcile(
        self,
        reference: PositionSnapshot,
        comparison: PositionSnapshot,
    ) -> ReconciliationResult:
        """Run the matcher. Output is ordered by (owner, instrument)."""
        ref_by_key = reference.by_key()
        cmp_by_key = comparison.by_key()

        result = ReconciliationResult(
            run_id=self._run_id(reference, comparison),
            reference_snapshot_id=reference.snapshot_id,
            comparison_snapshot_id=comparison.snapshot_id,
        )

        for key in sorted(ref_by_key):
            ref = ref_by_key[key]
            other = cmp_by_key.get(key)
            cmp_qty = other.quantity if other else _ZERO
            cmp_value = other.notional_value if other else _ZERO
            qty_var = cmp_qty - ref.quantity
            value_var = cmp_value - ref.notional_value

            if (
                other is not None
                and self.within_tolerance(qty_var, ref.quantity)
                and self.within_tolerance(value_var, ref.notional_value)
            ):
                result.matches.append(
                    PositionMatch(
                        owner_id=ref.owner_id,
                        instrument_id=ref.instrument_id,
                        reference_quantity=ref.quantity,
                        comparison_quantity=cmp_qty,
                        quantity_variance=qty_var,
                        value_variance=value_var,
                    )
                )
                continue

            result.breaks.append(
                self._make_break(
                    ref, cmp_qty, cmp_value, qty_var, value_var, reference, comparison,
                    missing=other is None,
                )
            )

        result.comparison_only = [
            cmp_by_key[key] for key in sorted(cmp_by_key) if key not in ref_by_key
        ]

        logger.info(
            "Reconciled %s vs %s: %d matches, %d breaks, %d comparison-only",
            reference.source_id,
            comparison.source_id,
            len(result.matches),
            len(result.breaks),
            len(result.comparison_only),
        )
        return result

    def summarize(self, result: ReconciliationResult) -> dict:
        """Totals and match rate for a run."""
        total_reference = len(result.matches) + len(result.breaks)
        by_severity: dict[str, int] = {}
        for b in result.breaks:
            by_severity[b.severity.value] = by_severity.get(b.severity.value, 0) + 1
        return {
            "run_id": result.run_id,
            "total_reference": total_reference,
            "matched": len(result.matches),
            "breaks": len(result.breaks),
            "comparison_only": len(result.comparison_only),
            "by_severity": by_severity,
            "match_rate": len(result.matches) / max(total_reference, 1),
        }

    def _make_break(
        self,
        ref: PositionRecord,
        cmp_qty: Decimal,
        cmp_value: Decimal,
        qty_var: Decimal,
        value_var: Decimal,
        reference: PositionSnapshot,
        comparison: PositionSnapshot,
        missing: bool = False,
    ) -> Break:
        return Break(
            break_id=make_break_id(
                reference.source_id, comparison.source_id, ref.owner_id, ref.instrument_id
            ),
            owner_id=ref.owner_id,
            instrument_id=ref.instrument_id,
            reference_source=reference.source_id,
            comparison_source=comparison.source_id,
            reference_quantity=ref.quantity,
            comparison_quantity=cmp_qty,
            reference_value=ref.notional_value,
            comparison_value=cmp_value,
            quantity_variance=qty_var,
            value_variance=value_var,
            severity=self.classifier.severity_for(qty_var, ref.quantity),
            detected_at=reference.ingested_at,
            missing_in_comparison=missing,
        )

    @staticmethod
    def _run_id(reference: PositionSnapshot, comparison: PositionSnapshot) -> str:
        raw = f"{reference.snapshot_id}:{comparison.snapshot_id}"
        return "RUN-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:12].upper()
