"""
Vault Lifecycle Tracker.

Polls the chain for new vaults and cap updates, periodically re-checks every
stored vault, and turns each detected state change into a transition for the
notification sink. The snapshot store is the only persisted state; Filled and
Expired are recomputed on every inspection.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .api.models import ChainEvent, Transition, VaultRecord
from .config import Config
from .exceptions import PersistenceError, VaultMonitorError
from .notifier import NotificationDispatcher, NotificationSink
from .state_manager import SnapshotStore
from .status import is_expired, is_filled
from .vault_reader import (
    read_capacity,
    read_deposit_info,
    read_latest_time,
    read_missing_enrichment,
    read_vault_attributes,
)

logger = logging.getLogger(__name__)

CREATION_EVENT = "AMMCreated"
CAP_UPDATE_EVENT = "TotalSupplyCapUpdated"
ENRICHMENT_FIELDS = ("depositTokenSymbol", "depositTokenDecimals", "selfAcc")


def batched(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class VaultTracker:
    """
    Drives the backfill and polling loop.

    Args:
        chain: Chain reader (current_height / get_events / call)
        store: Snapshot store
        sink: Notification sink; deliveries run on a background queue
        factory_address: AMM factory emitting creation events
        hub_address: Market hub used for token and cash lookups
        threshold_percent: Utilization at which a vault counts as filled
        poll_interval: Seconds between iterations
        start_block: First block of the cold-start backfill (default: head - backfill_blocks)
        backfill_blocks: Size of the cold-start backfill window
        status_check_interval: Blocks between full status sweeps
        batch_size: Vaults inspected concurrently during a sweep
        max_stalled_iterations: Held-back iterations after failed cap-update queries before advancing anyway
        on_state_change: Called whenever a vault's cap, supply or fill status is persisted
        clock: Source of unix time for `createdAt`
    """

    def __init__(
        self,
        chain,
        store: SnapshotStore,
        sink: NotificationSink,
        factory_address: str = Config.AMM_FACTORY_ADDRESS,
        hub_address: str = Config.MARKET_HUB_ADDRESS,
        threshold_percent: float = Config.FILLED_THRESHOLD_PERCENT,
        poll_interval: float = Config.POLL_INTERVAL_SECONDS,
        start_block: Optional[int] = None,
        backfill_blocks: int = Config.BACKFILL_BLOCKS,
        status_check_interval: int = Config.STATUS_CHECK_INTERVAL_BLOCKS,
        batch_size: int = Config.STATUS_CHECK_BATCH_SIZE,
        max_stalled_iterations: int = Config.MAX_STALLED_ITERATIONS,
        on_state_change: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.store = store
        self.sink = sink
        self.factory_address = factory_address
        self.hub_address = hub_address
        self.threshold_percent = threshold_percent
        self.poll_interval = poll_interval
        self.start_block = start_block
        self.backfill_blocks = backfill_blocks
        self.status_check_interval = status_check_interval
        self.batch_size = max(1, batch_size)
        self.max_stalled_iterations = max_stalled_iterations
        self.on_state_change = on_state_change
        self.clock = clock

        self.notifications = NotificationDispatcher(sink)
        self._stop_event = asyncio.Event()
        self._last_sweep_block: Optional[int] = None
        self._stalled_iterations = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        if not self._stop_event.is_set():
            logger.info("Stop requested, finishing current iteration...")
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Start up, then poll until stopped."""
        await self.start()
        logger.info(f"Monitoring started, polling every {self.poll_interval}s")

        while not self.stopped:
            try:
                await self.run_iteration()
            except Exception as e:
                logger.error(f"Unexpected error in monitoring loop: {e}", exc_info=True)
            await self._sleep(self.poll_interval)

        await self.notifications.stop()
        logger.info("Monitoring stopped")

    async def start(self) -> None:
        """
        Load state, send the startup message, backfill if needed and run the baseline sweep.

        The backfill is retried until it succeeds or the tracker is stopped.
        """
        self.store.load()

        if not await self.sink.send_startup_message():
            logger.warning("Failed to send startup message")

        if self.needs_backfill():
            while not self.stopped:
                if await self.backfill():
                    break
                logger.warning(f"Backfill incomplete, retrying in {self.poll_interval}s")
                await self._sleep(self.poll_interval)

        if self.stopped:
            return

        try:
            head = await self.chain.current_height()
        except VaultMonitorError as e:
            logger.error(f"Could not read block height for baseline status check: {e}")
            return
        await self.sweep(head)

    def needs_backfill(self) -> bool:
        """True when no block height has ever been persisted, i.e. no backfill completed."""
        return self.store.last_processed_block == 0

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def backfill(self) -> bool:
        """
        Silently reconstruct vault records from historical creation events.

        Returns:
            True if every creation event in the window was stored and the
            height was persisted
        """
        try:
            head = await self.chain.current_height()
        except VaultMonitorError as e:
            logger.error(f"Backfill: could not read block height: {e}")
            return False

        from_block = self.start_block if self.start_block is not None else max(0, head - self.backfill_blocks)
        logger.info(f"Backfilling vaults from block {from_block} to {head}")

        try:
            events = await self.chain.get_events("factory", self.factory_address, CREATION_EVENT, from_block, head)
        except VaultMonitorError as e:
            logger.error(f"Backfill: failed to query {CREATION_EVENT} events: {e}")
            return False

        logger.info(f"Backfill: found {len(events)} {CREATION_EVENT} events")
        complete = True
        for event in events:
            address = str(event.args.get("amm", ""))
            if self.store.get_vault(address) is not None:
                continue
            try:
                record = await self._build_record(address, head)
                self.store.upsert_vault(record)
                logger.info(f"Backfill: loaded vault {record.name} ({address})")
            except PersistenceError as e:
                logger.error(f"Backfill: failed to persist vault {address}: {e}")
            except VaultMonitorError as e:
                logger.error(f"Backfill: failed to load vault {address}: {e}")
                complete = False

        if not complete:
            return False

        try:
            self.store.advance(head)
        except PersistenceError as e:
            logger.error(f"Backfill: failed to persist block height: {e}")
            return False

        logger.info(f"Backfill complete: {len(self.store.all_vaults())} vaults, block {head}")
        return True

    async def _build_record(self, address: str, block: int) -> VaultRecord:
        """Read a vault's attributes and best-effort metadata into a new record."""
        attrs = await read_vault_attributes(self.chain, address)
        record = VaultRecord(
            address=address,
            name=attrs["name"],
            symbol=attrs["symbol"],
            maturity=attrs["maturity"],
            marketAddress=attrs["marketAddress"],
            lastCheckedBlock=block,
            createdAt=int(self.clock()),
        ).with_capacity(attrs["totalSupplyCap"], attrs["totalSupply"], self.threshold_percent)

        enrichment = await read_missing_enrichment(self.chain, self.hub_address, record)
        return record.model_copy(update=enrichment)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def run_iteration(self) -> None:
        """Process every block between the last processed block and the current head."""
        try:
            to_block = await self.chain.current_height()
        except VaultMonitorError as e:
            logger.error(f"Failed to read current block height: {e}")
            return

        from_block = self.store.last_processed_block + 1
        if from_block > to_block:
            logger.debug(f"No new blocks (last processed {from_block - 1}, head {to_block})")
            return

        logger.info(f"Processing blocks {from_block} to {to_block}")

        new_vaults_ok = await self.detect_new_vaults(from_block, to_block)
        cap_updates_ok = await self.detect_cap_updates(from_block, to_block)

        if self._sweep_due(to_block):
            await self.sweep(to_block)

        self._advance(from_block, to_block, new_vaults_ok, cap_updates_ok)

    def _sweep_due(self, block: int) -> bool:
        return self._last_sweep_block is None or block - self._last_sweep_block >= self.status_check_interval

    def _advance(self, from_block: int, to_block: int, creations_complete: bool, cap_updates_complete: bool) -> None:
        """
        Persist `to_block` as the last processed block, or hold the height back.

        A range with unprocessed vault creations is always re-covered: the sweep
        only re-inspects stored vaults, so a skipped creation would be lost.
        Missed cap updates are picked up by the sweep, so after
        `max_stalled_iterations` held-back iterations the height advances anyway.
        """
        if not creations_complete:
            logger.warning(
                f"Vault creations in blocks {from_block}-{to_block} not fully processed, "
                f"holding last processed block at {self.store.last_processed_block}"
            )
            return

        if not cap_updates_complete:
            self._stalled_iterations += 1
            if self._stalled_iterations < self.max_stalled_iterations:
                logger.warning(
                    f"Errors while processing blocks {from_block}-{to_block}, holding last processed "
                    f"block at {self.store.last_processed_block} "
                    f"({self._stalled_iterations}/{self.max_stalled_iterations})"
                )
                return
            logger.error(
                f"Processing failed for {self._stalled_iterations} consecutive iterations, "
                f"advancing to block {to_block} anyway"
            )

        try:
            self.store.advance(to_block)
            self._stalled_iterations = 0
        except PersistenceError as e:
            logger.error(f"Failed to persist last processed block {to_block}: {e}")

    async def detect_new_vaults(self, from_block: int, to_block: int) -> bool:
        """
        Store and announce vaults created in the block range.

        Returns:
            False if the log query or any vault failed
        """
        try:
            events = await self.chain.get_events(
                "factory", self.factory_address, CREATION_EVENT, from_block, to_block
            )
        except VaultMonitorError as e:
            logger.error(f"Failed to query {CREATION_EVENT} events: {e}")
            return False

        complete = True
        for event in events:
            try:
                await self._handle_creation(event, to_block)
            except VaultMonitorError as e:
                logger.error(f"Error processing new vault {event.args.get('amm')}: {e}")
                complete = False
            except Exception as e:
                logger.error(f"Unexpected error processing new vault {event.args.get('amm')}: {e}", exc_info=True)
                complete = False
        return complete

    async def _handle_creation(self, event: ChainEvent, to_block: int) -> None:
        address = str(event.args["amm"])
        if self.store.get_vault(address) is not None:
            logger.debug(f"Vault {address} already known, skipping")
            return

        logger.info(f"New vault detected: {address} (block {event.blockNumber})")
        record = await self._build_record(address, to_block)
        expired = is_expired(await read_latest_time(self.chain, record.marketAddress), record.maturity)

        self._persist(record)
        self._state_changed()

        if expired:
            logger.info(f"Vault {address} is already expired, not announcing")
            return

        deposit_info = await read_deposit_info(self.chain, self.hub_address, record)
        self._emit(Transition.vault_created(record, record.isFilled, deposit_info, event.blockNumber))

    async def detect_cap_updates(self, from_block: int, to_block: int) -> bool:
        """
        Apply cap-update events of every stored vault in the block range.

        Log queries run concurrently in batches; results are applied one vault
        at a time.

        Returns:
            False if any vault's log query or processing failed
        """
        complete = True
        records = self.store.all_vaults()

        for batch in batched(records, self.batch_size):
            results = await asyncio.gather(
                *(
                    self.chain.get_events("amm", record.address, CAP_UPDATE_EVENT, from_block, to_block)
                    for record in batch
                ),
                return_exceptions=True,
            )
            for record, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(f"Failed to query {CAP_UPDATE_EVENT} events for {record.address}: {result}")
                    complete = False
                    continue
                try:
                    await self._apply_cap_events(record, result)
                except VaultMonitorError as e:
                    logger.error(f"Error processing cap update for {record.address}: {e}")
                    complete = False
                except Exception as e:
                    logger.error(f"Unexpected error processing cap update for {record.address}: {e}", exc_info=True)
                    complete = False
        return complete

    async def _apply_cap_events(self, record: VaultRecord, events: List[ChainEvent]) -> None:
        # Events at or below lastCheckedBlock are already reflected in the record
        events = [event for event in events if event.blockNumber > record.lastCheckedBlock]
        if not events:
            return

        _, supply = await read_capacity(self.chain, record.address)
        expired = is_expired(await read_latest_time(self.chain, record.marketAddress), record.maturity)

        updated = record
        pending: List[Tuple[VaultRecord, int, int, bool, int]] = []
        for event in events:
            new_cap = int(event.args["newTotalSupplyCap"])
            old_cap = updated.totalSupplyCap
            if new_cap == old_cap:
                updated = updated.model_copy(update={"lastCheckedBlock": event.blockNumber})
                continue

            was_filled = is_filled(updated.lastKnownTotalSupply, old_cap, self.threshold_percent)
            updated = updated.with_capacity(
                new_cap, supply, self.threshold_percent, lastCheckedBlock=event.blockNumber
            )
            logger.info(f"Cap updated for {record.address}: {old_cap} -> {new_cap} (block {event.blockNumber})")
            pending.append((updated, old_cap, new_cap, was_filled, event.blockNumber))

        self._persist(updated)
        if pending:
            self._state_changed()

        if expired:
            if pending:
                logger.info(f"Vault {record.address} is expired, not announcing cap update")
            return

        for snapshot, old_cap, new_cap, was_filled, block_number in pending:
            deposit_info = await read_deposit_info(self.chain, self.hub_address, snapshot)
            self._emit(Transition.cap_raised(snapshot, old_cap, new_cap, supply, deposit_info, block_number))
            if was_filled and not snapshot.isFilled:
                self._emit(Transition.vault_available(snapshot, supply, deposit_info, block_number))

    # ------------------------------------------------------------------
    # Status sweep
    # ------------------------------------------------------------------

    async def sweep(self, block: int) -> None:
        """
        Re-inspect every stored vault through direct contract calls.

        Catches supply changes (deposits, withdrawals) that never show up in
        the cap-update event stream. Vaults are inspected concurrently in
        batches; results are merged into the store sequentially.
        """
        records = self.store.all_vaults()
        logger.info(f"Running status check for {len(records)} vaults at block {block}")

        for batch in batched(records, self.batch_size):
            results = await asyncio.gather(
                *(self.inspect_vault(record, block) for record in batch),
                return_exceptions=True,
            )
            for record, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(f"Error checking status of vault {record.address}: {result}")
                    continue
                if result is None:
                    continue
                updated, transitions = result
                self._persist(updated)
                if (
                    updated.totalSupplyCap != record.totalSupplyCap
                    or updated.lastKnownTotalSupply != record.lastKnownTotalSupply
                    or updated.isFilled != record.isFilled
                ):
                    self._state_changed()
                for transition in transitions:
                    self._emit(transition)

        self._last_sweep_block = block

    async def inspect_vault(
        self, record: VaultRecord, block: int
    ) -> Optional[Tuple[VaultRecord, List[Transition]]]:
        """
        Compute a vault's current status without touching the store.

        Args:
            record: Stored record
            block: Block height the inspection is attributed to

        Returns:
            (updated record, transitions), or None if the vault is expired
        """
        latest_time = await read_latest_time(self.chain, record.marketAddress)
        if is_expired(latest_time, record.maturity):
            logger.debug(f"Vault {record.address} is expired, skipping")
            return None

        cap, supply = await read_capacity(self.chain, record.address)
        was_filled = is_filled(record.lastKnownTotalSupply, record.totalSupplyCap, self.threshold_percent)
        enrichment = await read_missing_enrichment(self.chain, self.hub_address, record)
        updated = record.with_capacity(cap, supply, self.threshold_percent, lastCheckedBlock=block, **enrichment)

        transitions: List[Transition] = []
        cap_changed = cap != record.totalSupplyCap
        became_available = was_filled and not updated.isFilled
        became_filled = not was_filled and updated.isFilled

        deposit_info = None
        if cap_changed or became_available:
            deposit_info = await read_deposit_info(self.chain, self.hub_address, updated)

        if cap_changed:
            logger.info(f"Status check: cap changed for {record.address}: {record.totalSupplyCap} -> {cap}")
            transitions.append(Transition.cap_raised(updated, record.totalSupplyCap, cap, supply, deposit_info, block))
        if became_available:
            logger.info(f"Status check: vault {record.address} is available again")
            transitions.append(Transition.vault_available(updated, supply, deposit_info, block))
        elif became_filled:
            logger.info(f"Status check: vault {record.address} is now filled")
            transitions.append(Transition.vault_filled(updated, block))

        return updated, transitions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _persist(self, record: VaultRecord) -> None:
        """
        Write a record back, keeping metadata another writer filled in meanwhile.

        A failed write is logged; the record stays in memory and goes out with
        the next successful save.
        """
        current = self.store.get_vault(record.address)
        if current is not None:
            kept = {
                field: getattr(current, field)
                for field in ENRICHMENT_FIELDS
                if getattr(record, field) is None and getattr(current, field) is not None
            }
            if kept:
                record = record.model_copy(update=kept)
        try:
            self.store.upsert_vault(record)
        except PersistenceError as e:
            logger.error(f"Failed to persist vault {record.address}: {e}")

    def _state_changed(self) -> None:
        if self.on_state_change is not None:
            self.on_state_change()

    def _emit(self, transition: Transition) -> None:
        self.notifications.submit(transition)

    async def flush_notifications(self) -> None:
        """Wait until all queued notifications have been handed to the sink."""
        await self.notifications.join()
