"""Inspection pipeline: acquire, scan, post, serve."""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from imginspect.acquirers import get_acquirer
from imginspect.acquirers.extract import remove_tree
from imginspect.config import InspectorOptions
from imginspect.core.acquirer import ImageAcquirer
from imginspect.core.exceptions import (
    ConfigError,
    InspectorError,
    PostError,
    ScanError,
    ServeError,
)
from imginspect.core.models import (
    AcquisitionResult,
    FailurePolicy,
    InspectorMetadata,
    ScanReport,
    ScanResult,
)
from imginspect.core.registry import ScannerRegistry
from imginspect.core.scanner import BaseScanner
from imginspect.poster import ResultPoster
from imginspect.scanners import build_default_registry
from imginspect.server import ImageServer, ImageServerOptions, server_options

logger = logging.getLogger(__name__)

ServerFactory = Callable[[ImageServerOptions], ImageServer]


class PipelineState(str, Enum):
    """Stages of an inspection run."""

    IDLE = "idle"
    ACQUIRING = "acquiring"
    SCANNING = "scanning"
    POSTING = "posting"
    SERVING = "serving"
    DONE = "done"
    ERROR = "error"


class InspectionPipeline:
    """Runs one inspection: Acquire, Scan, then optionally Post and Serve.

    Stages run strictly one after another. The acquired filesystem tree is
    owned by the pipeline and removed when the run ends, whatever the
    outcome, unless ``keep_content`` is set.

    When serving is requested, either pass a ready ``image_server`` or a
    ``server_factory`` that builds one from the derived server options.
    """

    def __init__(
        self,
        opts: InspectorOptions,
        acquirer: ImageAcquirer | None = None,
        scanner_registry: ScannerRegistry | None = None,
        image_server: ImageServer | None = None,
        poster: ResultPoster | None = None,
        server_factory: ServerFactory | None = None,
    ) -> None:
        if opts.serve and image_server is None:
            if server_factory is None:
                raise ConfigError(f"Serving on {opts.serve} requires an image server")
            image_server = server_factory(server_options(opts))
        self.opts = opts
        self.acquirer = acquirer
        self.scanner_registry = scanner_registry or build_default_registry()
        self.image_server = image_server
        self.poster = poster or ResultPoster()
        self.meta = InspectorMetadata()
        self.scan_result = ScanResult()
        self.state = PipelineState.IDLE

    def _set_state(self, state: PipelineState) -> None:
        logger.debug("Pipeline state %s -> %s", self.state.value, state.value)
        self.state = state

    async def inspect(self) -> None:
        """Run the inspection.

        Raises:
            ConfigError: options are inconsistent
            AcquisitionError: the source could not be acquired
            ScannerInitError: the scanner could not be created
            ScanError: a scanner with a fatal failure policy failed
            ServeError: the result server failed
        """
        if self.state is not PipelineState.IDLE:
            raise InspectorError(f"Pipeline already ran (state {self.state.value})")
        try:
            self.opts.validate()
            if self.acquirer is None:
                self.acquirer = get_acquirer(self.opts)
            await self._run()
        except BaseException:
            self._set_state(PipelineState.ERROR)
            raise

    async def _run(self) -> None:
        source = self.opts.source
        self._set_state(PipelineState.ACQUIRING)
        logger.info("Acquiring %s", source)
        acquired = await self.acquirer.acquire(source)

        scanner: BaseScanner | None = None
        try:
            self.meta.image = acquired.image
            self.scan_result = acquired.scan_result

            self._set_state(PipelineState.SCANNING)
            scanner = self.scanner_registry.create_scanner(self.opts.scan_type, self.opts)
            report = await self._scan(scanner, acquired)

            if self.opts.post_result_url:
                self._set_state(PipelineState.POSTING)
                try:
                    await self.poster.post(
                        self.scan_result,
                        self.opts.post_result_url,
                        self.opts.post_result_token_file,
                    )
                except PostError as e:
                    logger.error("Error posting results: %s", e)
                    self._set_state(PipelineState.ERROR)
                    return

            if self.image_server is not None:
                self._set_state(PipelineState.SERVING)
                await self._serve(acquired.local_path, report)

            self._set_state(PipelineState.DONE)
        finally:
            if scanner is not None:
                await scanner.close()
            self._release(acquired)

    async def _scan(self, scanner: BaseScanner, acquired: AcquisitionResult) -> ScanReport:
        logger.info("Scanning %s with %s %s", acquired.local_path, scanner.name, scanner.version)
        try:
            try:
                results, report = await asyncio.wait_for(
                    scanner.scan(acquired.local_path, acquired.image, acquired.files_filter),
                    timeout=self.opts.scan_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ScanError(f"Scan timed out after {self.opts.scan_timeout}s") from e
        except ScanError as e:
            scanner.record_outcome(self.meta, e)
            if scanner.failure_policy is FailurePolicy.FATAL:
                logger.error("Unable to scan %s with %s: %s", self.opts.source, scanner.name, e)
                raise
            logger.warning("Unable to scan %s with %s: %s", self.opts.source, scanner.name, e)
            return ScanReport()

        scanner.record_outcome(self.meta, None)
        self.scan_result.extend(results)
        logger.info("%s reported %d results", scanner.name, len(results))
        return report

    async def _serve(self, image_path: str, report: ScanReport) -> None:
        try:
            await self.image_server.serve_image(
                self.meta, image_path, self.scan_result, report.raw, report.html
            )
        except InspectorError:
            raise
        except Exception as e:
            raise ServeError(f"Image server failed: {e}") from e

    def _release(self, acquired: AcquisitionResult) -> None:
        if self.opts.keep_content:
            logger.info("Keeping acquired content in %s", acquired.local_path)
            return
        logger.debug("Removing acquired content %s", acquired.local_path)
        try:
            remove_tree(acquired.local_path)
        except OSError as e:
            logger.warning("Unable to remove %s: %s", acquired.local_path, e)
