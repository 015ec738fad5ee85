"""Orchestration layer used by the CLI to run scans and vet sources."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Callable

from .adapters import SourceLoader
from .config import Config
from .engine import ScanEngine, ScanOptions
from .logger import get_logger
from .models import ScanResult
from .policy import GateDecision, Verdict, evaluate_gate

logger = get_logger(__name__)


@dataclass(slots=True)
class VetReport:
    """Result of vetting a source before installing it."""

    source: str
    result: ScanResult
    decision: GateDecision

    @property
    def verdict(self) -> Verdict:
        return self.result.verdict


def _incomplete_files(result: ScanResult) -> int:
    incomplete = int(result.metadata.get("files_incomplete", 0) or 0)
    if incomplete == 0 and (result.metadata.get("timed_out") or result.metadata.get("cancelled")):
        return 1
    return incomplete


ScanEngineFactory = Callable[[Config], ScanEngine]
SourceLoaderFactory = Callable[[], SourceLoader]


class ScanService:
    """High level service responsible for scanning and install-time vetting."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        engine_factory: ScanEngineFactory | None = None,
        source_loader_factory: SourceLoaderFactory | None = None,
    ) -> None:
        self.config = config or Config()
        self._engine_factory = engine_factory or ScanEngine
        self._source_loader_factory = source_loader_factory or SourceLoader

    # ------------------------------------------------------------------
    def scan(self, root: str | os.PathLike[str], options: ScanOptions | None = None) -> ScanResult:
        """Scan a local path."""

        engine = self._engine_factory(self.config)
        return engine.scan(root, options or ScanOptions.from_config(self.config))

    # ------------------------------------------------------------------
    def vet(
        self,
        source: str,
        *,
        skip_deps: bool = False,
        allow_high: bool = False,
        force: bool = False,
        options: ScanOptions | None = None,
    ) -> VetReport:
        """Fetch ``source``, scan it and apply the install gate.

        Remote sources are cloned into a temporary directory that is removed
        before this method returns or raises.
        """

        options = options or ScanOptions.from_config(self.config)
        skip_deps = skip_deps or options.skip_deps
        options = replace(options, skip_deps=skip_deps)

        loader = self._source_loader_factory()
        remote = loader.is_remote(source)
        engine = self._engine_factory(self.config)
        with loader.resolve(source, skip_deps=skip_deps) as path:
            result = engine.scan(path, options)

        metadata = dict(result.metadata)
        metadata.update({"source": source, "remote": remote})
        result = replace(result, metadata=metadata)

        decision = evaluate_gate(
            result.true_max_severity,
            allow_high=allow_high,
            force=force,
            incomplete_files=_incomplete_files(result),
        )
        logger.info("Vet finished", source=source, verdict=decision.verdict.value, status=decision.status.value)
        return VetReport(source=source, result=result, decision=decision)


__all__ = ["ScanService", "VetReport"]
