"""Requirement evaluator: does a wallet's on-chain activity satisfy a quest?

Each requirement kind has one handler; _HANDLERS maps every known requirement
model to it. Handlers only read (mirror node, or user state passed in) and
always report progress/target, met or not, so the UI can show completion.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from badgebound.mirror.client import MirrorClient
from badgebound.mirror.records import TimeWindow
from badgebound.mirror.units import ensure_utc, format_units
from badgebound.quests.requirements import (
    HbarTransferCount,
    LpHoldDays,
    Requirement,
    SeasonLevelAtLeast,
    StakeMinAmount,
    SwapCount,
    SwapVolume,
    TransferDirection,
    UnknownRequirement,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class EvaluationResult:
    met: bool
    progress: float
    target: float

    @property
    def completion(self) -> float:
        """Progress ratio in [0, 1]; target is clamped to >= 1."""
        ratio = float(self.progress) / max(float(self.target), 1.0)
        return max(0.0, min(ratio, 1.0))

    @property
    def completion_percent(self) -> int:
        return round(self.completion * 100)


NOT_MET = EvaluationResult(met=False, progress=0, target=0)


@dataclass(frozen=True)
class EvaluationContext:
    wallet: str
    window: TimeWindow
    season_level: int
    now: datetime
    quest_id: int | None


def _number(value: Decimal | int | float) -> float | int:
    """Report whole numbers as int, everything else as float (JSON friendly)."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class RequirementEvaluator:
    """Evaluates requirements against the mirror node.

    `settings` needs: swap_protocol, saucerswap_router_id,
    saucerswap_lp_token_id, saucerswap_lp_decimals, hbar_decimals,
    token_decimals.
    """

    def __init__(self, mirror: MirrorClient, settings: Any) -> None:
        self.mirror = mirror
        self.settings = settings

    async def evaluate(
        self,
        wallet: str,
        requirement: Requirement,
        window: TimeWindow | None = None,
        *,
        season_level: int = 1,
        now: datetime | None = None,
        quest_id: int | None = None,
    ) -> EvaluationResult:
        ctx = EvaluationContext(
            wallet=wallet.lower(),
            window=window or TimeWindow(),
            season_level=season_level,
            now=ensure_utc(now or datetime.now(timezone.utc)),
            quest_id=quest_id,
        )
        if ctx.window.is_empty:
            logger.debug("Quest %s: empty evaluation window for %s", quest_id, ctx.wallet)

        handler = _HANDLERS.get(type(requirement))
        if handler is None:
            logger.warning(
                'Unknown requirement type "%s" for quest %s', requirement.type, quest_id
            )
            return NOT_MET
        return await handler(self, requirement, ctx)

    # ── Handlers ──

    def _supported_protocol(self, requirement: Any, ctx: EvaluationContext) -> bool:
        if requirement.protocol == self.settings.swap_protocol:
            return True
        logger.warning(
            "%s only implemented for %s, got protocol=%s (quest %s)",
            requirement.type, self.settings.swap_protocol, requirement.protocol, ctx.quest_id,
        )
        return False

    async def _swap_count(self, req: SwapCount, ctx: EvaluationContext) -> EvaluationResult:
        if not self._supported_protocol(req, ctx):
            return EvaluationResult(False, 0, req.min_count)

        results = await self.mirror.contract_results(
            ctx.wallet, ctx.window, contract_id=self.settings.saucerswap_router_id
        )
        count = len(results)
        met = count >= req.min_count
        logger.info(
            "SWAP_COUNT quest %s for %s: count=%d, min=%d, met=%s",
            ctx.quest_id, ctx.wallet, count, req.min_count, met,
        )
        return EvaluationResult(met, count, req.min_count)

    async def _swap_volume(self, req: SwapVolume, ctx: EvaluationContext) -> EvaluationResult:
        if not self._supported_protocol(req, ctx):
            return EvaluationResult(False, 0, req.min_volume)

        router = self.settings.saucerswap_router_id
        activity = await self.mirror.account_transactions(ctx.wallet, ctx.window)

        if req.token:
            net = sum(tx.net_token_amount(router, req.token) for tx in activity.transactions)
            decimals = int(self.settings.token_decimals.get(req.token, 0))
        else:
            net = sum(tx.net_amount(router) for tx in activity.transactions)
            decimals = self.settings.hbar_decimals

        volume = format_units(abs(net), decimals)
        met = volume >= Decimal(str(req.min_volume))
        logger.info(
            "SWAP_VOLUME quest %s for %s: volume=%s, minVolume=%s, met=%s",
            ctx.quest_id, ctx.wallet, volume, req.min_volume, met,
        )
        return EvaluationResult(met, _number(volume), req.min_volume)

    async def _lp_hold_days(self, req: LpHoldDays, ctx: EvaluationContext) -> EvaluationResult:
        if not self._supported_protocol(req, ctx):
            return EvaluationResult(False, 0, req.days)

        lp_token = self.settings.saucerswap_lp_token_id
        tokens = await self.mirror.token_balances(ctx.wallet)
        holding = next((t for t in tokens if t.token_id == lp_token and t.associated), None)
        if holding is None or holding.created_timestamp is None:
            return EvaluationResult(False, 0, req.days)

        balance = format_units(holding.balance, self.settings.saucerswap_lp_decimals)
        # Days since association, not days of continuous holding.
        held_seconds = (ctx.now - holding.created_timestamp).total_seconds()
        days_held = max(0.0, held_seconds / SECONDS_PER_DAY)

        has_amount = balance >= Decimal(str(req.min_amount))
        met = has_amount and days_held >= req.days
        progress = min(int(days_held), req.days) if has_amount else 0
        logger.info(
            "LP_HOLD_DAYS quest %s for %s: balance=%s, daysHeld=%.2f, met=%s",
            ctx.quest_id, ctx.wallet, balance, days_held, met,
        )
        return EvaluationResult(met, progress, req.days)

    async def _hbar_transfer_count(
        self, req: HbarTransferCount, ctx: EvaluationContext
    ) -> EvaluationResult:
        activity = await self.mirror.account_transactions(ctx.wallet, ctx.window)
        account = activity.account_id
        if account is None:
            return EvaluationResult(False, 0, req.min_count)

        count = 0
        for tx in activity.transactions:
            # Failed transactions still charge a fee; that is not a transfer.
            if not tx.succeeded:
                continue
            amount = tx.net_amount(account)
            if amount == 0:
                continue
            if req.direction is TransferDirection.IN and amount > 0:
                count += 1
            elif req.direction is TransferDirection.OUT and amount < 0:
                count += 1
            elif req.direction is TransferDirection.BOTH:
                count += 1

        met = count >= req.min_count
        logger.info(
            "HBAR_TRANSFER_COUNT quest %s for %s: direction=%s, count=%d, min=%d, met=%s",
            ctx.quest_id, ctx.wallet, req.direction.value, count, req.min_count, met,
        )
        return EvaluationResult(met, count, req.min_count)

    async def _stake_min_amount(
        self, req: StakeMinAmount, ctx: EvaluationContext
    ) -> EvaluationResult:
        info = await self.mirror.account_info(ctx.wallet)
        if info is None or not info.is_staking:
            return EvaluationResult(False, 0, req.min_amount)

        staked = format_units(info.balance, self.settings.hbar_decimals)
        met = staked >= Decimal(str(req.min_amount))
        return EvaluationResult(met, _number(staked), req.min_amount)

    async def _season_level(
        self, req: SeasonLevelAtLeast, ctx: EvaluationContext
    ) -> EvaluationResult:
        return EvaluationResult(ctx.season_level >= req.min_level, ctx.season_level, req.min_level)

    async def _unknown(self, req: UnknownRequirement, ctx: EvaluationContext) -> EvaluationResult:
        logger.warning('Unknown requirement.type "%s" for quest %s', req.type, ctx.quest_id)
        return NOT_MET


_Handler = Callable[[RequirementEvaluator, Any, EvaluationContext], Awaitable[EvaluationResult]]

_HANDLERS: dict[type, _Handler] = {
    SwapCount: RequirementEvaluator._swap_count,
    SwapVolume: RequirementEvaluator._swap_volume,
    LpHoldDays: RequirementEvaluator._lp_hold_days,
    HbarTransferCount: RequirementEvaluator._hbar_transfer_count,
    StakeMinAmount: RequirementEvaluator._stake_min_amount,
    SeasonLevelAtLeast: RequirementEvaluator._season_level,
    UnknownRequirement: RequirementEvaluator._unknown,
}
