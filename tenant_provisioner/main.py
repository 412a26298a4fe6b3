from __future__ import annotations

import asyncio
import contextlib
import logging
import platform
import signal
import sys

from dotenv import load_dotenv

from tenant_provisioner.services.config import WorkerConfig
from tenant_provisioner.services.database import DatabaseError
from tenant_provisioner.services.dependencies import build_worker
from tenant_provisioner.services.worker import ProvisioningWorker


logger = logging.getLogger("tenant_provisioner")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    formatter = logging.Formatter(_LOG_FORMAT)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    else:
        root.setLevel(level)
        for handler in root.handlers:
            handler.setFormatter(formatter)

    # Per-request debug output from the AWS SDK drowns out the worker's own logs.
    for name in ("botocore", "aiobotocore", "aioboto3", "urllib3"):
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


def _install_signal_handlers(worker: ProvisioningWorker) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        # Not available on Windows event loops; Ctrl+C still raises KeyboardInterrupt there.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, worker.request_stop, sig.name)


async def serve(worker: ProvisioningWorker, *, grace_seconds: float) -> int:
    """Run the worker until it is asked to stop. Returns the process exit code."""

    try:
        await worker.start()
    except DatabaseError as exc:
        logger.error("Fatal startup failure: %s", exc)
        await worker.close()
        return 1

    _install_signal_handlers(worker)

    run_task = asyncio.create_task(worker.run())
    stop_task = asyncio.create_task(worker.wait_for_stop_request())
    await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    stop_task.cancel()

    if not run_task.done():
        done, _ = await asyncio.wait({run_task}, timeout=grace_seconds)
        if not done:
            logger.warning(
                "In-flight work did not finish within %.0fs; cancelling (the message will be redelivered)",
                grace_seconds,
            )
            run_task.cancel()
            await asyncio.wait({run_task})

    exit_code = 0
    if not run_task.cancelled() and run_task.exception() is not None:
        logger.error("Uncaught fault in provisioning loop", exc_info=run_task.exception())
        exit_code = 1

    await worker.close()
    if exit_code == 0:
        logger.info("Graceful shutdown completed")
    return exit_code


def main() -> int:
    load_dotenv()

    try:
        worker_config = WorkerConfig.from_env()
        configure_logging(worker_config.log_level)
    except ValueError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return 1

    logger.info(
        "Starting tenant collection provisioner (python=%s log_level=%s)",
        platform.python_version(),
        worker_config.log_level,
    )

    try:
        worker = build_worker()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    return asyncio.run(serve(worker, grace_seconds=worker_config.shutdown_grace_seconds))


if __name__ == "__main__":
    sys.exit(main())
