"""
ALLOCATION ENGINE
Distribute investable capital across under-allocated assets

RESPONSIBILITIES:
- Weighted priority per asset (gap x score / 100)
- Max funded assets per subclass
- Minimum allocation value per subclass, with redistribution
- Proportional shares, rounded to cents
- Validate that the amounts add up to the investable total

RULES:
❌ No I/O, no prices, no currency conversion
❌ Over-allocated, untargeted or unscored assets never get money
✅ Decimal only, rounding happens once at the end
✅ Sum of amounts equals total investable exactly
✅ Deterministic output (stable tie-breaks)
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from advisor.core.errors import InternalError, ValidationError
from advisor.domain.models import (
    AllocatedAmount,
    AllocationCandidate,
    AllocationOutcome,
    SubclassConstraint,
)
from advisor.utils.decimal_utils import CENT, HUNDRED, ZERO, decimal_places, round_money


class DropReason:
    NO_TARGET = "no_target"
    NO_SCORE = "no_score"
    OVER_ALLOCATED = "over_allocated"
    AT_TARGET = "at_target"
    MAX_ASSETS = "max_assets"
    BELOW_MINIMUM = "below_minimum"


class AllocationEngine:
    """
    Allocation Engine
    Priority-ranked proportional distribution of new capital
    """

    def __init__(self, constraints: Optional[Iterable[SubclassConstraint]] = None):
        """
        Initialize allocation engine

        Args:
            constraints: Per-subclass minimum value / max asset count
        """
        self.constraints: Dict[str, SubclassConstraint] = {
            c.subclass_id: c for c in (constraints or [])
        }

    @staticmethod
    def weighted_priority(candidate: AllocationCandidate) -> Decimal:
        """
        gap x (score / 100) for under-allocated, scored assets; 0 otherwise
        """
        if candidate.gap is None or candidate.score is None:
            return ZERO
        gap = candidate.gap.allocation_gap_pct
        if gap <= ZERO:
            return ZERO
        return gap * (candidate.score / HUNDRED)

    def allocate(
        self,
        candidates: Sequence[AllocationCandidate],
        total_investable: Decimal,
    ) -> AllocationOutcome:
        """
        Allocate total_investable across candidates

        Args:
            candidates: Every asset in the portfolio (targeted or not)
            total_investable: Contribution + dividends, at most 2 dp

        Returns:
            AllocationOutcome with one AllocatedAmount per candidate

        Raises:
            ValidationError: total is not positive or has sub-cent precision
            InternalError: rounded amounts do not add up to the total
        """
        if total_investable <= ZERO:
            raise ValidationError("Total investable must be positive")
        if decimal_places(total_investable) > 2:
            raise ValidationError("Total investable cannot have more than 2 decimal places")

        priorities = {c.asset_id: self.weighted_priority(c) for c in candidates}
        reasons: Dict[str, str] = {}
        for c in candidates:
            if priorities[c.asset_id] == ZERO:
                reasons[c.asset_id] = self._ineligible_reason(c)

        eligible = [c for c in candidates if priorities[c.asset_id] > ZERO]
        eligible, capped = self._apply_max_assets(eligible, priorities)
        for asset_id in capped:
            reasons[asset_id] = DropReason.MAX_ASSETS

        total_priority = sum((priorities[c.asset_id] for c in eligible), ZERO)
        if total_priority == ZERO:
            # Balanced portfolio: nothing under-allocated
            return AllocationOutcome(
                amounts={
                    c.asset_id: AllocatedAmount(
                        asset_id=c.asset_id,
                        weighted_priority=priorities[c.asset_id],
                        amount=ZERO.quantize(CENT),
                        dropped_reason=reasons.get(c.asset_id),
                    )
                    for c in candidates
                },
                total_priority=ZERO,
                is_balanced=True,
                iterations=0,
            )

        funded = sorted(eligible, key=lambda c: self._rank_key(c, priorities))
        initial_shares = self._shares(funded, priorities, total_investable)
        shares, funded, iterations, warnings = self._enforce_minimums(
            funded, priorities, initial_shares, total_investable, reasons
        )

        amounts = self._round_exact(funded, shares, total_investable)

        allocated: Dict[str, AllocatedAmount] = {}
        for c in candidates:
            amount = amounts.get(c.asset_id, ZERO.quantize(CENT))
            redistributed = ZERO
            if c.asset_id in amounts:
                redistributed = round_money(shares[c.asset_id] - initial_shares[c.asset_id])
            allocated[c.asset_id] = AllocatedAmount(
                asset_id=c.asset_id,
                weighted_priority=priorities[c.asset_id],
                amount=amount,
                redistributed_from=redistributed,
                dropped_reason=reasons.get(c.asset_id),
            )

        self._validate_total(allocated, total_investable)

        return AllocationOutcome(
            amounts=allocated,
            total_priority=total_priority,
            is_balanced=False,
            iterations=iterations,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # CONSTRAINTS
    # ------------------------------------------------------------------

    def _apply_max_assets(
        self,
        eligible: List[AllocationCandidate],
        priorities: Dict[str, Decimal],
    ) -> Tuple[List[AllocationCandidate], List[str]]:
        """Keep the top N per subclass by priority (ties: score, then symbol)."""
        by_subclass: Dict[str, List[AllocationCandidate]] = {}
        for c in eligible:
            if c.subclass_id is not None:
                by_subclass.setdefault(c.subclass_id, []).append(c)

        capped: List[str] = []
        for subclass_id, members in by_subclass.items():
            constraint = self.constraints.get(subclass_id)
            if constraint is None or constraint.max_assets is None:
                continue
            ranked = sorted(members, key=lambda c: self._rank_key(c, priorities))
            capped.extend(c.asset_id for c in ranked[constraint.max_assets:])

        capped_ids = set(capped)
        kept = [c for c in eligible if c.asset_id not in capped_ids]
        return kept, capped

    def _enforce_minimums(
        self,
        funded: List[AllocationCandidate],
        priorities: Dict[str, Decimal],
        shares: Dict[str, Decimal],
        total_investable: Decimal,
        reasons: Dict[str, str],
    ) -> Tuple[Dict[str, Decimal], List[AllocationCandidate], int, List[str]]:
        """
        Drop below-minimum assets one at a time and re-share among the rest.

        Each iteration removes the single lowest-ranked offender, so the
        loop runs at most len(funded) - 1 times. The last funded asset is
        never dropped; it keeps the whole amount and a warning is recorded.
        """
        funded = list(funded)
        iterations = 0
        max_iterations = len(funded)
        while len(funded) > 1 and iterations < max_iterations:
            offenders = [c for c in funded if shares[c.asset_id] < self._minimum(c)]
            if not offenders:
                break
            victim = max(offenders, key=lambda c: self._rank_key(c, priorities))
            funded.remove(victim)
            reasons[victim.asset_id] = DropReason.BELOW_MINIMUM
            iterations += 1
            shares = {**shares, **self._shares(funded, priorities, total_investable)}
            shares[victim.asset_id] = ZERO

        warnings: List[str] = []
        if len(funded) == 1:
            only = funded[0]
            minimum = self._minimum(only)
            if shares[only.asset_id] < minimum:
                warnings.append(
                    f"{only.symbol} receives {round_money(shares[only.asset_id])}, "
                    f"below its minimum allocation of {minimum}"
                )
        return shares, funded, iterations, warnings

    def _minimum(self, candidate: AllocationCandidate) -> Decimal:
        if candidate.subclass_id is None:
            return ZERO
        constraint = self.constraints.get(candidate.subclass_id)
        if constraint is None or constraint.min_allocation_value is None:
            return ZERO
        return constraint.min_allocation_value

    # ------------------------------------------------------------------
    # ARITHMETIC
    # ------------------------------------------------------------------

    @staticmethod
    def _shares(
        funded: List[AllocationCandidate],
        priorities: Dict[str, Decimal],
        total_investable: Decimal,
    ) -> Dict[str, Decimal]:
        total_priority = sum((priorities[c.asset_id] for c in funded), ZERO)
        return {
            c.asset_id: priorities[c.asset_id] * total_investable / total_priority
            for c in funded
        }

    @staticmethod
    def _round_exact(
        funded: List[AllocationCandidate],
        shares: Dict[str, Decimal],
        total_investable: Decimal,
    ) -> Dict[str, Decimal]:
        """
        Round each share HALF_UP to cents, then settle the leftover cents.

        `funded` is in rank order. Missing cents go to the top-ranked
        assets, surplus cents come off the bottom-ranked ones, one cent per
        asset, so a higher-ranked asset never ends up below a lower one.
        """
        amounts = {c.asset_id: round_money(shares[c.asset_id]) for c in funded}
        residual_cents = int((total_investable - sum(amounts.values(), ZERO)) / CENT)

        top_down = [c.asset_id for c in funded]
        while residual_cents > 0:
            for asset_id in top_down:
                if residual_cents == 0:
                    break
                amounts[asset_id] += CENT
                residual_cents -= 1

        bottom_up = list(reversed(top_down))
        while residual_cents < 0:
            for asset_id in bottom_up:
                if residual_cents == 0:
                    break
                if amounts[asset_id] >= CENT:
                    amounts[asset_id] -= CENT
                    residual_cents += 1
        return amounts

    @staticmethod
    def _validate_total(amounts: Dict[str, AllocatedAmount], total_investable: Decimal) -> None:
        total = sum((a.amount for a in amounts.values()), ZERO)
        tolerance = CENT * len(amounts)
        if abs(total - total_investable) > tolerance:
            raise InternalError(
                f"Allocation sum {total} does not match total investable {total_investable}",
                details={"sum": str(total), "total_investable": str(total_investable)},
            )

    @staticmethod
    def _rank_key(candidate: AllocationCandidate, priorities: Dict[str, Decimal]):
        score = candidate.score if candidate.score is not None else ZERO
        return (-priorities[candidate.asset_id], -score, candidate.symbol, candidate.asset_id)

    @staticmethod
    def _ineligible_reason(candidate: AllocationCandidate) -> str:
        if candidate.gap is None:
            return DropReason.NO_TARGET
        if candidate.gap.is_over_allocated:
            return DropReason.OVER_ALLOCATED
        if candidate.score is None or candidate.score == ZERO:
            return DropReason.NO_SCORE
        return DropReason.AT_TARGET
