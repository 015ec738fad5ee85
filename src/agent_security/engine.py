"""Scan engine: discover files, run detectors in parallel, assemble results."""

from __future__ import annotations

import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .adapters.rule_engine import EvaluationCancelled, PatternRuleEngine, RuleEngineAdapter, detector_error
from .config import Config
from .discovery import FileDiscovery
from .logger import get_logger
from .models import FileResult, Finding, FindingSeverity, ScanResult, ScanTarget
from .platforms import Platform, PlatformProfile, get_profile
from .rules import RulePackManager

logger = get_logger(__name__)

POLL_INTERVAL = 0.05


@dataclass(slots=True)
class ScanOptions:
    """Per-invocation switches for :meth:`ScanEngine.scan`."""

    third_party_only: bool = False
    platform: Platform | str = Platform.GENERIC
    min_severity: Optional[FindingSeverity] = None
    include_clean_files: bool = False
    skip_deps: bool = False
    installed_only: bool = False
    timeout: Optional[float] = None
    workers: Optional[int] = None
    cancel_event: Optional[threading.Event] = None

    @classmethod
    def from_config(cls, config: Config, **overrides: Any) -> "ScanOptions":
        """Build options from config values, letting non-``None`` overrides win."""

        values: Dict[str, Any] = {
            "min_severity": config.min_severity,
            "include_clean_files": config.include_clean_files,
            "skip_deps": config.skip_deps,
            "installed_only": config.installed_only,
            "timeout": config.timeout,
            "workers": config.workers,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


RuleEngineFactory = Callable[[Config], RuleEngineAdapter]


def _default_rule_engine(config: Config) -> RuleEngineAdapter:
    return PatternRuleEngine(
        rule_pack_manager=RulePackManager(disabled_rules=config.disabled_rules),
        manifests=config.rule_manifests,
        disabled_categories=config.disabled_categories,
        decode_depth=config.decode_depth,
        enable_entropy=config.enable_entropy,
    )


class ScanEngine:
    """Run the detector set over every eligible file below a root."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        rule_engine: RuleEngineAdapter | None = None,
        rule_engine_factory: RuleEngineFactory | None = None,
    ) -> None:
        self.config = config or Config()
        self._rule_engine = rule_engine
        self._rule_engine_factory = rule_engine_factory or _default_rule_engine

    # ------------------------------------------------------------------
    @property
    def rule_engine(self) -> RuleEngineAdapter:
        if self._rule_engine is None:
            self._rule_engine = self._rule_engine_factory(self.config)
        return self._rule_engine

    # ------------------------------------------------------------------
    def profile(self, platform: Platform | str) -> PlatformProfile:
        return get_profile(platform, extra_publishers=self.config.official_publishers)

    # ------------------------------------------------------------------
    def scan(self, root: str | os.PathLike[str], options: ScanOptions | None = None) -> ScanResult:
        """Scan ``root`` and return per-file findings in sorted path order.

        Raises :class:`~agent_security.discovery.PathNotFound` when the root is
        missing. A timeout or cancellation returns the files completed so far.
        """

        options = options or ScanOptions()
        profile = self.profile(options.platform)
        discovery = FileDiscovery(
            skip_dirs=self.config.skip_dirs,
            skip_deps=options.skip_deps,
            trusted_packages=self.config.trusted_packages,
            allowlist=self.config.allowlist,
            max_file_size=self.config.max_file_size,
            installed_only=options.installed_only,
            profile=profile,
        )
        found = discovery.discover(root)

        targets = found.targets
        first_party = 0
        if options.third_party_only:
            targets = [target for target in found.targets if target.third_party]
            first_party = len(found.targets) - len(targets)

        engine = self.rule_engine
        slots, timed_out, cancelled = self._run(targets, engine, options)

        results: List[FileResult] = []
        incomplete = 0
        for target, findings in zip(targets, slots):
            if findings is None:
                incomplete += 1
                continue
            if findings or options.include_clean_files:
                results.append(FileResult(path=target.relative_path, findings=findings))

        metadata: Dict[str, Any] = {
            "root": str(found.root),
            "platform": profile.platform.value,
            "third_party_only": options.third_party_only,
            "files_scanned": len(targets) - incomplete,
            "files_skipped": len(found.skipped),
            "files_first_party": first_party,
            "files_incomplete": incomplete,
            "timed_out": timed_out,
            "cancelled": cancelled,
        }

        result = ScanResult(results=results, metadata=metadata)
        logger.info(
            "Scan finished",
            root=metadata["root"],
            files=metadata["files_scanned"],
            findings=result.finding_count,
            timed_out=timed_out,
            cancelled=cancelled,
        )

        if options.min_severity is not None:
            result = result.filtered(options.min_severity, include_clean_files=options.include_clean_files)
        return result

    # ------------------------------------------------------------------
    def _run(
        self,
        targets: Sequence[ScanTarget],
        engine: RuleEngineAdapter,
        options: ScanOptions,
    ) -> tuple[List[Optional[List[Finding]]], bool, bool]:
        slots: List[Optional[List[Finding]]] = [None] * len(targets)
        if not targets:
            return slots, False, False

        abort = threading.Event()
        lock = threading.Lock()
        deadline = time.monotonic() + options.timeout if options.timeout else None
        cancel_event = options.cancel_event
        timed_out = cancelled = False

        executor = ThreadPoolExecutor(max_workers=options.workers or None, thread_name_prefix="scan")
        try:
            pending: set[Future[None]] = {
                executor.submit(self._scan_one, index, target, engine, slots, abort, lock)
                for index, target in enumerate(targets)
            }
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                wait_for = POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        timed_out = True
                        break
                    wait_for = min(wait_for, remaining)
                _, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
        finally:
            with lock:
                abort.set()
            executor.shutdown(wait=False, cancel_futures=True)

        if timed_out:
            logger.warning("Scan timed out", timeout=options.timeout)
        elif cancelled:
            logger.warning("Scan cancelled")
        return slots, timed_out, cancelled

    # ------------------------------------------------------------------
    def _scan_one(
        self,
        index: int,
        target: ScanTarget,
        engine: RuleEngineAdapter,
        slots: List[Optional[List[Finding]]],
        abort: threading.Event,
        lock: threading.Lock,
    ) -> None:
        if abort.is_set():
            return
        try:
            findings = engine.evaluate_file(target, cancel_event=abort)
        except EvaluationCancelled:
            return
        except Exception as exc:  # noqa: BLE001
            logger.warning("File evaluation failed", path=target.relative_path, error=str(exc))
            findings = [detector_error(target, "evaluation", exc)]

        with lock:
            if not abort.is_set():
                slots[index] = findings


__all__ = ["ScanEngine", "ScanOptions"]
