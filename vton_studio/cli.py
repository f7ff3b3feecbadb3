"""Command line entry point: run the server or a try-on batch against it.

Usage:
    vton-studio serve --port 8000
    vton-studio tryon --model me.jpg --product dress.webp --product pants.webp
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from datetime import datetime
from pathlib import Path

from .config import StudioConfig, configure_logging, load_config
from .errors import PreprocessingError
from .models import AspectRatio, JobStatus
from .pipeline import JobOrchestrator, StudioSession
from .services import StudioClient
from .utils import ImagePreprocessor

logger = logging.getLogger(__name__)


def _print_notification(message: str, level: str) -> None:
    marker = "!" if level == "error" else "*"
    print(f"  {marker} {message}")


def _progress_line(orchestrator: JobOrchestrator) -> str:
    parts = []
    for job in sorted(orchestrator.jobs, key=lambda j: j.sequence):
        label = f"m{job.model_index}p{job.product_index}"
        if job.status == JobStatus.LOADING:
            parts.append(f"{label} {job.progress:4.1f}%")
        else:
            parts.append(f"{label} {job.status.value}")
    return " | ".join(parts)


async def run_tryon(args: argparse.Namespace, config: StudioConfig) -> int:
    client = StudioClient(args.server or config.server_url, proxy_hosts=config.proxy_allowed_hosts)
    orchestrator = JobOrchestrator(
        client,
        config.orchestrator,
        preload=client.preload,
        notify=_print_notification,
    )
    session = StudioSession(orchestrator, ImagePreprocessor(config.preprocess), notify=_print_notification)

    try:
        for kind, paths in (("model", args.model), ("product", args.product)):
            for path in paths:
                content_type, _ = mimetypes.guess_type(path.name)
                try:
                    session.add_image(kind, path.name, path.read_bytes(), content_type)
                except PreprocessingError:
                    continue

        if args.prompt:
            session.prompt = args.prompt
        if args.aspect_ratio:
            session.aspect_ratio = args.aspect_ratio
        session.generate_all = not args.first_model_only

        if not session.can_generate:
            print("Need at least one model image, one product image and a prompt.")
            return 2

        job_ids = session.generate()
        while orchestrator.is_loading:
            print(f"\r{_progress_line(orchestrator)}", end="", flush=True)
            await asyncio.sleep(1.0)
        await orchestrator.wait(job_ids)
        print(f"\r{_progress_line(orchestrator)}")

        batch_dir = args.output_dir / datetime.now().strftime("%Y%m%d_%H%M%S")
        batch_dir.mkdir(parents=True, exist_ok=True)

        for job in orchestrator.completed_jobs():
            try:
                image = await client.fetch_image(job.result_url)  # type: ignore[arg-type]
            except Exception as exc:
                logger.error("Error downloading %s: %s", job.result_url, exc)
                continue
            target = batch_dir / job.download_filename()
            target.write_bytes(image)
            print(f"  saved {target}")

        manifest = [job.model_dump(mode="json") for job in orchestrator.jobs]
        (batch_dir / "batch.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")

        failed = [job for job in orchestrator.jobs if job.status == JobStatus.ERROR]
        return 1 if failed else 0
    finally:
        await orchestrator.aclose()
        await client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vton-studio", description="Virtual try-on studio")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    tryon = sub.add_parser("tryon", help="Generate every model x product combination")
    tryon.add_argument("--model", type=Path, action="append", required=True, help="Model image (repeatable)")
    tryon.add_argument("--product", type=Path, action="append", required=True, help="Product image (repeatable)")
    tryon.add_argument("--prompt", help="Override the default try-on prompt")
    tryon.add_argument(
        "--aspect-ratio",
        choices=[ratio.value for ratio in AspectRatio],
        help="Defaults to the ratio detected from the first model image",
    )
    tryon.add_argument("--first-model-only", action="store_true", help="Pair every product with the first model only")
    tryon.add_argument("--server", help="Studio server URL (default: SERVER_URL or http://127.0.0.1:8000)")
    tryon.add_argument("--output-dir", type=Path, help="Where batch folders are written")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(config.log_level)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("api.server:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    args.output_dir = args.output_dir or config.output_dir
    return asyncio.run(run_tryon(args, config))


if __name__ == "__main__":
    sys.exit(main())
