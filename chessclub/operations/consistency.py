"""
Consistency Operations Module

Out-of-band identity corrections against the game ledger.

Key functionality:
- list_merge_candidates(): every player id seen in the ledger, orphans first
- merge_preview() / merge_players(): repoint every game (and the auxiliary
  per-player tables) from one player id to another
- preview_reconciliation() / apply_reconciliation(): repair stale player
  ids and names by first-name matching against the roster

Reconciliation is always two-phase. The preview returns a plan id that
fingerprints the proposed rewrites; apply recomputes the plan and refuses
to write when the fingerprint no longer matches, so nothing is ever
applied that was not previewed.

Batch operations report per-row failures instead of aborting.
"""

import hashlib
import json
from collections import OrderedDict
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from chessclub.constants import CacheTags, PlayerConstants, ReconciliationConstants
from chessclub.data_models.games import GameFilter, GameRecord
from chessclub.data_models.reports import (
    AmbiguousName, MergeCandidate, MergePreview, MergeReport, PlayerRef,
    ReconciliationPreview, ReconciliationProposal, ReconciliationReport
)
from chessclub.data_models.standings import RosterEntry
from chessclub.database.ledger import AUXILIARY_TABLES
from chessclub.services.post_write import PostWriteTask
from chessclub.utils.exceptions import ClubError, NotFoundError, ValidationError
from chessclub.utils.logger import setup_logger
from chessclub.utils.names import get_first_name

logger = setup_logger(__name__)


class AmbiguityPolicy(Enum):
    """How reconciliation treats a first name shared by several roster members."""
    SKIP = "skip"                # leave those games alone and report the name
    FIRST_MATCH = "first_match"  # use the alphabetically first roster member


class ConsistencyCoordinator:
    """Player identity merges and batch reconciliation over the ledger."""

    def __init__(self, ledger, rating_engine, cache, post_write,
                 ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.SKIP):
        self.ledger = ledger
        self.rating_engine = rating_engine
        self.cache = cache
        self.post_write = post_write
        self.ambiguity_policy = ambiguity_policy

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_merge(source_id: str, target_id: str) -> Tuple[str, str]:
        source_id = (source_id or '').strip()
        target_id = (target_id or '').strip()
        if not source_id or not target_id:
            raise ValidationError("Both sourceId and targetId are required")
        if source_id == target_id:
            raise ValidationError("Source and target players must be different")
        system = {source_id, target_id} & PlayerConstants.SYSTEM_PLAYER_IDS
        if system:
            raise ValidationError(f"System player '{sorted(system)[0]}' cannot be merged")
        return source_id, target_id

    async def _resolve_target_name(self, target_id: str) -> str:
        """Canonical name: the roster entry, else the most recent name snapshot in the ledger."""
        player = await self.ledger.find_player(target_id)
        if player is not None:
            return player.name

        games = await self.ledger.list_games(GameFilter(player_id=target_id))
        for game in reversed(games):
            if game.player1_id == target_id:
                return game.player1_name
            if game.player2_id == target_id:
                return game.player2_name
        raise NotFoundError("Player", target_id)

    async def list_merge_candidates(self) -> List[MergeCandidate]:
        """Every non-system player id referenced by the ledger, orphans first, then by game count."""
        games = await self.ledger.list_games(GameFilter())
        roster_ids = {entry.id for entry in await self.ledger.list_roster()}

        counts: Dict[str, int] = {}
        names: Dict[str, str] = {}
        for game in games:
            for player_id, name in ((game.player1_id, game.player1_name),
                                    (game.player2_id, game.player2_name)):
                if player_id in PlayerConstants.SYSTEM_PLAYER_IDS:
                    continue
                counts[player_id] = counts.get(player_id, 0) + 1
                names[player_id] = name

        candidates = [
            MergeCandidate(
                player_id=player_id,
                name=names[player_id],
                game_count=count,
                is_in_roster=player_id in roster_ids,
            )
            for player_id, count in counts.items()
        ]
        candidates.sort(key=lambda c: (c.is_in_roster, -c.game_count, c.name.casefold()))
        return candidates

    async def merge_preview(self, source_id: str, target_id: str) -> MergePreview:
        source_id, target_id = self._validate_merge(source_id, target_id)
        count = await self.ledger.count_games_referencing(source_id)
        return MergePreview(source_id=source_id, target_id=target_id, games_to_update=count)

    async def merge_players(self, source_id: str, target_id: str,
                            admin_id: Optional[str] = None,
                            recalc_ratings: bool = True) -> MergeReport:
        """
        Repoint every game referencing ``source_id`` to ``target_id``.

        Each game is rewritten on its own; failures are collected in the
        report. Auxiliary tables are updated best-effort: a failure there is
        a warning and never aborts the ledger rewrite.
        """
        source_id, target_id = self._validate_merge(source_id, target_id)
        target_name = await self._resolve_target_name(target_id)
        report = MergeReport(source_id=source_id, target_id=target_id, target_name=target_name)

        games = await self.ledger.list_games(GameFilter(player_id=source_id))
        logger.info(f"Merging {source_id} into {target_id} ({target_name}): {len(games)} game(s)")

        for game in games:
            fields = {}
            if game.player1_id == source_id:
                fields.update(player1_id=target_id, player1_name=target_name)
            if game.player2_id == source_id:
                fields.update(player2_id=target_id, player2_name=target_name)
            try:
                await self.ledger.update_game(game.id, **fields)
                report.games.record_success()
            except ClubError as e:
                logger.error(f"Failed to repoint game {game.id} during merge: {e}")
                report.games.record_failure(game.id, e)

        for table in AUXILIARY_TABLES:
            try:
                report.auxiliary_updated[table] = await self.ledger.repoint_auxiliary(
                    table, source_id, target_id, target_name
                )
            except ClubError as e:
                warning = f"Failed to update {table}: {e}"
                logger.warning(f"Merge {source_id} -> {target_id}: {warning}")
                report.auxiliary_warnings.append(warning)

        tasks = [
            PostWriteTask(
                "invalidate merged views",
                lambda: self.cache.invalidate_by_tags(CacheTags.LEDGER_WRITE + (CacheTags.MEMBERS,))
            ),
        ]
        if admin_id:
            tasks.append(PostWriteTask(
                "audit merge",
                lambda: self.ledger.record_audit(
                    admin_id, "player_merge", "player", target_id,
                    {'sourceId': source_id, **report.to_payload()}
                )
            ))
        if recalc_ratings and report.games.updated:
            tasks.append(PostWriteTask("recalculate ratings", self.rating_engine.recalc_all))
        self.post_write.dispatch(tasks)

        logger.info(report.message)
        return report

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _first_name_index(self, roster: Iterable[RosterEntry]) -> Tuple[Dict[str, PlayerRef], Dict[str, List[PlayerRef]]]:
        """Map first name -> roster member, plus the first names shared by several members."""
        grouped: "OrderedDict[str, List[PlayerRef]]" = OrderedDict()
        for entry in roster:
            if entry.is_system:
                continue
            first_name = get_first_name(entry.name)
            if first_name:
                grouped.setdefault(first_name, []).append(PlayerRef(id=entry.id, name=entry.name))

        index = {}
        ambiguous = {}
        for first_name, refs in grouped.items():
            if len(refs) > 1:
                ambiguous[first_name] = refs
                if self.ambiguity_policy is AmbiguityPolicy.SKIP:
                    continue
            index[first_name] = refs[0]
        return index, ambiguous

    @staticmethod
    def _needs_update(current_id: str, current_name: str, match: Optional[PlayerRef]) -> Optional[PlayerRef]:
        if match is None:
            return None
        if current_id != match.id or current_name != match.name:
            return match
        return None

    @staticmethod
    def _plan_id(proposals: List[ReconciliationProposal]) -> str:
        fingerprint = json.dumps([p.to_payload() for p in proposals], sort_keys=True)
        return hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:16]

    async def _build_plan(self, game_ids: Optional[Iterable[str]] = None):
        scope = GameFilter(game_ids=frozenset(game_ids)) if game_ids else GameFilter()
        games = await self.ledger.list_games(scope)
        roster = await self.ledger.list_roster()
        index, ambiguous = self._first_name_index(roster)

        # Newest games first
        games = sorted(games, key=lambda g: (g.game_date, g.ledger_seq), reverse=True)

        proposals = []
        affected = {first_name: 0 for first_name in ambiguous}
        for game in games:
            first1 = get_first_name(game.player1_name)
            first2 = get_first_name(game.player2_name)
            for first_name in {first1, first2}:
                if first_name in affected:
                    affected[first_name] += 1

            player1_new = self._needs_update(game.player1_id, game.player1_name, index.get(first1))
            player2_new = self._needs_update(game.player2_id, game.player2_name, index.get(first2))
            if player1_new or player2_new:
                proposals.append(ReconciliationProposal(
                    game_id=game.id,
                    game_date=game.game_date.isoformat(),
                    player1_current=PlayerRef(game.player1_id, game.player1_name),
                    player2_current=PlayerRef(game.player2_id, game.player2_name),
                    player1_new=player1_new,
                    player2_new=player2_new,
                ))

        ambiguous_report = [
            AmbiguousName(first_name=first_name, candidates=refs, affected_games=affected[first_name])
            for first_name, refs in ambiguous.items()
        ]
        return games, proposals, ambiguous_report

    async def preview_reconciliation(self, game_ids: Optional[Iterable[str]] = None) -> ReconciliationPreview:
        """Compute the proposed identity rewrites. Nothing is written."""
        games, proposals, ambiguous = await self._build_plan(game_ids)
        preview = ReconciliationPreview(
            plan_id=self._plan_id(proposals),
            total_games=len(games),
            proposals=proposals,
            ambiguous=ambiguous,
            preview_limit=ReconciliationConstants.PREVIEW_LIMIT,
        )
        if ambiguous:
            logger.warning(
                f"Reconciliation preview found {len(ambiguous)} ambiguous first name(s): "
                f"{', '.join(a.first_name for a in ambiguous)} (policy: {self.ambiguity_policy.value})"
            )
        logger.info(f"Reconciliation preview {preview.plan_id}: {len(proposals)} of {len(games)} game(s) to update")
        return preview

    async def apply_reconciliation(self, plan_id: str, game_ids: Optional[Iterable[str]] = None,
                                   admin_id: Optional[str] = None) -> ReconciliationReport:
        """
        Apply a previously previewed plan.

        Raises:
            ValidationError: if ``plan_id`` is missing or the ledger or roster
                changed since the preview
        """
        if not plan_id:
            raise ValidationError("A planId from a reconciliation preview is required")

        games, proposals, _ = await self._build_plan(game_ids)
        current_plan = self._plan_id(proposals)
        if current_plan != plan_id:
            raise ValidationError("Reconciliation plan is out of date. Run the preview again")

        report = ReconciliationReport(plan_id=plan_id)
        report.games_not_changed = len(games) - len(proposals)

        for proposal in proposals:
            fields = {}
            if proposal.player1_new:
                fields.update(player1_id=proposal.player1_new.id, player1_name=proposal.player1_new.name)
            if proposal.player2_new:
                fields.update(player2_id=proposal.player2_new.id, player2_name=proposal.player2_new.name)
            try:
                await self.ledger.update_game(proposal.game_id, **fields)
            except ClubError as e:
                logger.error(f"Failed to reconcile game {proposal.game_id}: {e}")
                report.games.record_failure(proposal.game_id, e)
                continue
            report.games.record_success()
            if proposal.player1_new:
                report.player1_updates += 1
            if proposal.player2_new:
                report.player2_updates += 1

        tasks = [
            PostWriteTask(
                "invalidate reconciled views",
                lambda: self.cache.invalidate_by_tags(CacheTags.LEDGER_WRITE)
            ),
        ]
        if admin_id:
            tasks.append(PostWriteTask(
                "audit reconciliation",
                lambda: self.ledger.record_audit(
                    admin_id, "batch_reconcile", "games", None, report.to_payload()
                )
            ))
        if report.games.updated:
            tasks.append(PostWriteTask("recalculate ratings", self.rating_engine.recalc_all))
        self.post_write.dispatch(tasks)

        logger.info(
            f"Reconciliation {plan_id} applied: {report.games.updated} updated, "
            f"{report.games.failed} failed, {report.games_not_changed} unchanged"
        )
        return report
