"""Bus master service used by the CLI and the public API."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from mbusctl.core.address import (
    normalize_mask,
    parse_new_primary,
    parse_request_address,
    parse_source,
)
from mbusctl.core.cancel import CancellationToken, is_cancelled
from mbusctl.core.errors import (
    AddressInUseError,
    FrameError,
    NoReplyError,
    ProtocolViolationError,
    ReassignError,
    ReassignTransportError,
    RequestError,
    SelectionCollisionError,
    SelectionError,
    SelectionNoMatchError,
    TransportError,
)
from mbusctl.core.model import (
    BROADCAST_NOREPLY,
    FULL_WILDCARD_MASK,
    MAX_PRIMARY_SLAVES,
    NETWORK_LAYER,
    BusSettings,
    FrameType,
    ProbeReport,
    ReassignResult,
    ReassignStep,
    RecvError,
    RecvInvalid,
    RecvOk,
    RecvResult,
    RecvTimeout,
    RequestResult,
    ScanReport,
    ScanStatus,
    SelectOutcome,
)
from mbusctl.core.registry import DeviceRegistry
from mbusctl.core.retry import RetryPolicy
from mbusctl.transports.base import Transport
from mbusctl.transports.frames import decode_data_header

LOGGER = logging.getLogger(__name__)

ScanCallback = Callable[[int, ScanStatus], None]


@contextmanager
def _step(step: ReassignStep) -> Iterator[None]:
    try:
        yield
    except ReassignError:
        raise
    except TransportError as exc:
        raise ReassignTransportError(f"{step.value}: {exc}", step=step) from exc
    except SelectionError as exc:
        raise ReassignError(f"{step.value}: {exc}", step=step) from exc


class BusMaster:
    """Discovery and addressing engine for one M-Bus line.

    All operations are sequential and blocking; only one request/response
    exchange is ever outstanding on the bus.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        settings: BusSettings | None = None,
        registry: DeviceRegistry | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings or BusSettings()
        self.registry = registry or DeviceRegistry(capacity=self.settings.registry_capacity)

    def init_slaves(self) -> None:
        """Reset every slave to the start of its data records."""
        try:
            self.transport.send_ping(NETWORK_LAYER, purge_response=True)
            self.transport.send_ping(BROADCAST_NOREPLY, purge_response=True)
        except TransportError:
            LOGGER.warning("failed initializing M-Bus slaves")
            raise

    def _ping_address(self, address: int) -> RecvResult:
        policy = RetryPolicy(max_attempts=self.settings.max_search_retry + 1)

        def _attempt(attempt: int) -> RecvResult:
            LOGGER.debug("ping %d (attempt %d)", address, attempt)
            self.transport.send_ping(address)
            return self.transport.recv_frame()

        return policy.run(_attempt).result

    def _classify(self, address: int, result: RecvResult) -> ScanStatus:
        if isinstance(result, RecvTimeout):
            return ScanStatus.SILENT
        if isinstance(result, RecvInvalid):
            self.transport.purge_frames()
            LOGGER.warning("collision at address %d", address)
            return ScanStatus.COLLISION
        if isinstance(result, RecvError):
            raise TransportError(f"Scan aborted at address {address}: {result.message}")
        if isinstance(result, RecvOk):
            if result.frame.type is not FrameType.ACK:
                self.transport.purge_frames()
                LOGGER.warning(
                    "collision at address %d, expected ACK, got %s frame", address, result.frame.type.value
                )
                return ScanStatus.COLLISION
            if self.transport.purge_frames():
                LOGGER.warning("collision at address %d", address)
                return ScanStatus.COLLISION
            LOGGER.info("found an M-Bus device at address %d", address)
            return ScanStatus.FOUND
        raise AssertionError(f"unhandled receive result {result!r}")

    def scan_primary_range(
        self,
        *,
        cancel: CancellationToken | None = None,
        on_outcome: ScanCallback | None = None,
    ) -> ScanReport:
        """Ping every primary address 0-250 and classify the answers."""
        self.init_slaves()

        report = ScanReport()
        for address in range(MAX_PRIMARY_SLAVES + 1):
            if is_cancelled(cancel):
                LOGGER.info("scan cancelled before address %d", address)
                report.cancelled = True
                break

            status = self._classify(address, self._ping_address(address))
            if status is ScanStatus.FOUND:
                report.found.append(address)
            elif status is ScanStatus.COLLISION:
                report.collisions.append(address)
            if on_outcome is not None and status is not ScanStatus.SILENT:
                on_outcome(address, status)

        return report

    def _on_found(self, secondary_address: str) -> None:
        if self.registry.add(secondary_address):
            LOGGER.info("found an M-Bus device at secondary address %s", secondary_address.upper())

    def probe_secondary(
        self,
        mask: str | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> ProbeReport:
        """Enumerate devices under a secondary address mask.

        The registry is rebuilt from scratch, so devices that left the bus
        since an earlier probe are not reported again.
        """
        mask = normalize_mask(mask if mask is not None else FULL_WILDCARD_MASK)
        self.init_slaves()
        self.registry.clear()
        self.transport.probe_secondary_range(mask, self._on_found, cancel=cancel)
        cancelled = is_cancelled(cancel)
        if cancelled:
            LOGGER.info("probe of %s cancelled, registry is partial", mask)
        return ProbeReport(devices=self.registry.devices(), cancelled=cancelled)

    def select_secondary(self, mask: str) -> int:
        """Select the single device matching `mask`, returning the network layer address."""
        mask = normalize_mask(mask)
        LOGGER.debug("sending secondary select for mask %s", mask)
        outcome = self.transport.select_secondary(mask)

        if outcome is SelectOutcome.SINGLE:
            LOGGER.debug("address mask %s matches a single device", mask)
            return NETWORK_LAYER
        if outcome is SelectOutcome.COLLISION:
            raise SelectionCollisionError(f"Address mask [{mask}] matches more than one device.")
        if outcome is SelectOutcome.NOTHING:
            raise SelectionNoMatchError(f"Address mask [{mask}] does not match any device.")
        if outcome is SelectOutcome.ERROR:
            raise TransportError(f"Failed selecting secondary address [{mask}].")
        raise AssertionError(f"unhandled select outcome {outcome!r}")

    def reassign(self, source: int | str, new_primary: int | str) -> ReassignResult:
        """Move a device to a new primary address.

        `source` is the device's current primary address or a secondary
        address mask. The registry is only updated once the device has
        acknowledged the new address.
        """
        source = parse_source(source)
        new_primary = parse_new_primary(new_primary)
        label = source if isinstance(source, str) else str(source)

        with _step(ReassignStep.INIT):
            self.init_slaves()

        with _step(ReassignStep.VERIFY_FREE):
            self.transport.send_ping(new_primary)
            probe_result = self.transport.recv_frame()
            if isinstance(probe_result, RecvError):
                raise TransportError(f"verification ping failed: {probe_result.message}")
            if not isinstance(probe_result, RecvTimeout):
                raise AddressInUseError(
                    f"Verification failed, primary address [{new_primary}] already in use.",
                    step=ReassignStep.VERIFY_FREE,
                )

        current = source
        if isinstance(source, str):
            with _step(ReassignStep.SELECT):
                current = self.select_secondary(source)

        policy = RetryPolicy(max_attempts=self.settings.commit_attempts)

        def _commit(attempt: int) -> RecvResult:
            LOGGER.debug("set primary address %s -> %d (attempt %d)", label, new_primary, attempt)
            self.transport.send_set_primary_address(current, new_primary)
            return self.transport.recv_frame()

        with _step(ReassignStep.COMMIT):
            outcome = policy.run(_commit)
            if outcome.exhausted:
                raise NoReplyError(f"No reply from device [{label}].", step=ReassignStep.COMMIT)
            if isinstance(outcome.result, RecvError):
                raise TransportError(f"failed receiving reply from [{label}]: {outcome.result.message}")

        reply = outcome.result
        if not isinstance(reply, RecvOk) or reply.frame.type is not FrameType.ACK:
            frame = reply.frame if isinstance(reply, RecvOk) else None
            if frame is not None:
                LOGGER.error("invalid response from device [%s], expected ACK, got:\n%s", label, frame.dump())
            else:
                LOGGER.error("invalid response from device [%s], expected ACK: %s", label, reply)
            raise ProtocolViolationError(
                f"Invalid response from device [{label}], expected ACK.",
                step=ReassignStep.VERIFY_ACK,
                frame=frame,
            )

        device = None
        if isinstance(source, str):
            device = self.registry.set_primary(source, new_primary)
        LOGGER.debug("primary address of device %s set to %d", label, new_primary)
        return ReassignResult(source=source, new_primary=new_primary, attempts=outcome.attempts, device=device)

    def request(self, address: int | str) -> RequestResult:
        """Request user data from a device and decode its fixed header."""
        target = parse_request_address(address)
        self.init_slaves()
        primary = self.select_secondary(target) if isinstance(target, str) else target

        self.transport.send_request(primary)
        result = self.transport.recv_frame()
        if not isinstance(result, RecvOk):
            raise RequestError(f"Failed receiving M-Bus response from {target}: {result}")

        try:
            header = decode_data_header(result.frame)
        except FrameError as exc:
            LOGGER.debug("reply from %s has no variable data header: %s", target, exc)
            header = None
        return RequestResult(address=primary, frame=result.frame, header=header)

