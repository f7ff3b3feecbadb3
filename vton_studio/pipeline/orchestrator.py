"""Multi-job generation orchestrator.

Fans a model x product selection out into independent asyncio tasks, keeps
one immutable ``Job`` per task, and exposes the newest-first job list a
presentation layer (or the CLI) renders.

Flow per job:
1. Register a ``loading`` job and start its progress simulator
2. Wait for its stagger slot, then call the generator
3. Optionally preload the result image
4. Settle as ``complete`` or ``error``

Cancellation sets the job's event, cancels its task (which aborts the HTTP
request) and settles the job right away. A settled job is never changed
again, so a response that arrives after a cancel is dropped.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence

from ..config import OrchestratorConfig
from ..errors import (
    CANCELLED_MESSAGE,
    CancelledByUserError,
    ProviderError,
    StudioError,
    ValidationError,
)
from ..models import (
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    Job,
    JobStatus,
    UploadEntry,
)
from .progress import next_progress

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


class Generator(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ...


def select_combinations(
    model_count: int, product_count: int, all_combinations: bool = True
) -> list[tuple[int, int]]:
    """(model index, product index) pairs in dispatch order.

    All combinations: model outer loop, product inner loop. Otherwise every
    product with the first model.
    """
    if all_combinations:
        return [(m, p) for m in range(model_count) for p in range(product_count)]
    return [(0, p) for p in range(product_count)]


def log_notification(message: str, level: str) -> None:
    if level == "error":
        logger.warning(message)
    else:
        logger.info(message)


class JobOrchestrator:
    """Owns the job list and every task that mutates it."""

    def __init__(
        self,
        generator: Generator,
        config: OrchestratorConfig | None = None,
        preload: Callable[[str], Awaitable[Any]] | None = None,
        notify: Notifier | None = None,
    ):
        self.generator = generator
        self.config = config or OrchestratorConfig()
        self.preload = preload if self.config.preload_results else None
        self._notify = notify or log_notification

        self._jobs: tuple[Job, ...] = ()
        self._sequence = itertools.count(1)
        self._tasks: dict[str, asyncio.Task] = {}
        self._tickers: dict[str, asyncio.Task] = {}
        self._watchers: set[asyncio.Task] = set()

        self.selected_job_id: str | None = None
        self.selected_image_ready = False

    # ---- reading state -------------------------------------------------

    @property
    def jobs(self) -> tuple[Job, ...]:
        """All jobs, newest first."""
        return self._jobs

    def get_job(self, job_id: str) -> Job | None:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    @property
    def selected_job(self) -> Job | None:
        """The selected job, or the newest one when nothing is selected."""
        if self.selected_job_id is not None:
            job = self.get_job(self.selected_job_id)
            if job is not None:
                return job
        return self._jobs[0] if self._jobs else None

    @property
    def is_loading(self) -> bool:
        return any(job.status == JobStatus.LOADING for job in self._jobs)

    def completed_jobs(self) -> list[Job]:
        return [job for job in self._jobs if job.status == JobStatus.COMPLETE and job.result_url]

    # ---- starting work -------------------------------------------------

    def start_batch(
        self,
        models: Sequence[UploadEntry],
        products: Sequence[UploadEntry],
        prompt: str,
        aspect_ratio: str = "square",
        all_combinations: bool = True,
    ) -> list[str]:
        """Start one virtual try-on job per selected combination.

        Returns job ids in dispatch order. Must be called from a running
        event loop; nothing here awaits.
        """
        if not models or not products or not prompt.strip():
            raise ValidationError("At least one model image, one product image and a prompt are required")

        combinations = select_combinations(len(models), len(products), all_combinations)
        self._notify(f"Generating {len(combinations)} virtual try-on images...", "success")

        job_ids = []
        for position, (model_idx, product_idx) in enumerate(combinations):
            request = GenerationRequest(
                mode=GenerationMode.VIRTUAL_TRY_ON,
                prompt=prompt,
                aspect_ratio=aspect_ratio,
                images=[models[model_idx].to_input(), products[product_idx].to_input()],
            )
            job_id = self._register(
                request,
                delay=position * self.config.stagger_delay,
                select=position == 0,
                model_index=model_idx,
                product_index=product_idx,
            )
            job_ids.append(job_id)

        watcher = asyncio.create_task(self._announce_when_settled(job_ids))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return job_ids

    def submit(self, request: GenerationRequest, select: bool = True) -> str:
        """Start a single job for any generation mode."""
        return self._register(request, delay=0.0, select=select)

    def _register(
        self,
        request: GenerationRequest,
        delay: float,
        select: bool,
        model_index: int | None = None,
        product_index: int | None = None,
    ) -> str:
        cancel_event = asyncio.Event()
        job = Job(
            sequence=next(self._sequence),
            mode=request.mode,
            prompt=request.prompt,
            aspect_ratio=request.aspect_ratio,
            model_index=model_index,
            product_index=product_index,
            cancel_event=cancel_event,
        )
        self._jobs = (job,) + self._jobs
        if select:
            self.select_job(job.id)

        self._tickers[job.id] = asyncio.create_task(self._tick_progress(job.id))
        self._tasks[job.id] = asyncio.create_task(
            self._run_job(job.id, request, delay, cancel_event)
        )
        logger.debug("Registered job %s (model=%s, product=%s)", job.id, model_index, product_index)
        return job.id

    # ---- job lifecycle -------------------------------------------------

    async def _tick_progress(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.config.progress_interval)
            job = self.get_job(job_id)
            if job is None or job.status != JobStatus.LOADING:
                return
            self._replace(job_id, progress=next_progress(job.progress))

    async def _run_job(
        self,
        job_id: str,
        request: GenerationRequest,
        delay: float,
        cancel_event: asyncio.Event,
    ) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            if cancel_event.is_set():
                return

            result = await self.generator.generate(request)
            if cancel_event.is_set():
                logger.info("Dropping result for cancelled job %s", job_id)
                return

            thumbnail_loaded = False
            if self.preload is not None:
                try:
                    await self.preload(result.url)
                    thumbnail_loaded = True
                except Exception as exc:
                    logger.warning("Error preloading image %s: %s", result.url, exc)
                if cancel_event.is_set():
                    return

            self._complete(job_id, result, thumbnail_loaded)
        except asyncio.CancelledError:
            logger.info("Generation aborted for %s", job_id)
            self._settle(
                job_id,
                error_message=CANCELLED_MESSAGE,
                progress=0.0,
                cancelled=True,
            )
            raise
        except StudioError as exc:
            self._fail(job_id, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error in job %s", job_id)
            self._fail(job_id, str(exc) or type(exc).__name__)
        finally:
            self._stop_ticker(job_id)
            self._tasks.pop(job_id, None)

    def _complete(self, job_id: str, result: GenerationResult, thumbnail_loaded: bool) -> None:
        settled = self._settle(
            job_id,
            status=JobStatus.COMPLETE,
            progress=100.0,
            result_url=result.url,
            description=result.description,
            thumbnail_loaded=thumbnail_loaded or self.preload is None,
        )
        if settled:
            logger.info("Job %s complete: %s", job_id, result.url)
            if self.selected_job_id == job_id:
                self.selected_image_ready = True

    def _fail(self, job_id: str, message: str) -> None:
        if self._settle(job_id, error_message=message, progress=0.0):
            logger.error("Error generating image for %s: %s", job_id, message)
            self._notify(f"Error generating image: {message}", "error")

    def _settle(self, job_id: str, status: JobStatus = JobStatus.ERROR, **changes: Any) -> bool:
        """Move a loading job to a terminal state. Returns False if it already left loading."""
        job = self.get_job(job_id)
        if job is None or job.status != JobStatus.LOADING:
            return False
        self._replace(job_id, status=status, cancel_event=None, **changes)
        self._stop_ticker(job_id)
        return True

    def _replace(self, job_id: str, **changes: Any) -> None:
        self._jobs = tuple(
            job.model_copy(update=changes) if job.id == job_id else job
            for job in self._jobs
        )

    def _stop_ticker(self, job_id: str) -> None:
        ticker = self._tickers.pop(job_id, None)
        if ticker is not None and not ticker.done():
            ticker.cancel()

    async def _announce_when_settled(self, job_ids: list[str]) -> None:
        tasks = [self._tasks[job_id] for job_id in job_ids if job_id in self._tasks]
        if tasks:
            await asyncio.wait(tasks)
        self._notify("All virtual try-on images generated!", "success")

    # ---- user actions --------------------------------------------------

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a loading job. Returns False when there was nothing to cancel.

        The job is settled before the transport notices the abort, so it
        never lingers in ``loading``.
        """
        job = self.get_job(job_id)
        if job is None or job.status != JobStatus.LOADING:
            return False

        if job.cancel_event is not None:
            job.cancel_event.set()
        # A task cancelled before its first step never reaches its finally block
        task = self._tasks.pop(job_id, None)
        if task is not None and not task.done():
            task.cancel()

        self._settle(job_id, error_message=CANCELLED_MESSAGE, progress=0.0, cancelled=True)
        self._notify("Generation cancelled", "error")
        return True

    def select_job(self, job_id: str) -> None:
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        self.selected_job_id = job_id
        self.selected_image_ready = job.status == JobStatus.COMPLETE

    def remove_job(self, job_id: str) -> None:
        self.cancel_job(job_id)
        self._jobs = tuple(job for job in self._jobs if job.id != job_id)
        if self.selected_job_id == job_id:
            self.selected_job_id = None
            self.selected_image_ready = False

    def clear_jobs(self) -> None:
        """Cancel whatever is still running and forget every job."""
        for job in self._jobs:
            self.cancel_job(job.id)
        self._jobs = ()
        self.selected_job_id = None
        self.selected_image_ready = False

    # ---- waiting -------------------------------------------------------

    async def wait(self, job_ids: Iterable[str] | None = None) -> list[Job]:
        """Wait until the given jobs (default: all) have settled."""
        ids = list(job_ids) if job_ids is not None else [job.id for job in self._jobs]
        tasks = [self._tasks[job_id] for job_id in ids if job_id in self._tasks]
        if tasks:
            await asyncio.wait(tasks)
        return [job for job in (self.get_job(job_id) for job_id in ids) if job is not None]

    async def result(self, job_id: str) -> GenerationResult:
        """Wait for one job and return its result.

        Raises:
            KeyError: unknown job
            CancelledByUserError: the job was cancelled
            ProviderError: the job failed
        """
        if self.get_job(job_id) is None:
            raise KeyError(job_id)
        await self.wait([job_id])
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.cancelled:
            raise CancelledByUserError()
        if job.status != JobStatus.COMPLETE or job.result_url is None:
            raise ProviderError(job.error_message or "Generation failed")
        return GenerationResult(url=job.result_url, prompt=job.prompt, description=job.description)

    async def aclose(self) -> None:
        """Cancel every running task and wait for them to unwind."""
        pending = list(self._tasks.values()) + list(self._tickers.values()) + list(self._watchers)
        running = [job.id for job in self._jobs if job.status == JobStatus.LOADING]
        for job_id in running:
            self.cancel_job(job_id)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
