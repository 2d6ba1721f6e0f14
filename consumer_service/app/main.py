import asyncio
import signal
import sys

from loguru import logger

from consumer_service.app.composition import create_consumer_dependencies
from consumer_service.app.config.settings import Settings
from consumer_service.app.core import SERVICE_NAME
from consumer_service.app.core.logging import configure_logging
from consumer_service.app.domain.models import ConsumptionStats
from consumer_service.app.messaging.acknowledgment import FatalAckError


def _log(event: str, **kwargs) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_consumer(settings: Settings, processor=None) -> ConsumptionStats:
    deps = create_consumer_dependencies(settings, processor=processor)
    _log(
        "consumer_starting",
        mode=settings.consumer_mode.value,
        queue=settings.queue_name,
        backend=settings.consumer_backend,
    )
    await deps.connect()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, deps.request_shutdown)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        stats = await deps.consumption_loop.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        await deps.close()

    _log(
        "consumer_stopped",
        processed=stats.processed,
        acknowledged=stats.acknowledged,
        batches=stats.batches,
        fetch_errors=stats.fetch_errors,
    )
    return stats


def main() -> None:
    try:
        settings = Settings()
    except Exception as e:
        logger.exception("invalid consumer configuration: {}", e)
        raise
    configure_logging(settings.log_level, serialize=settings.log_json)

    try:
        asyncio.run(run_consumer(settings))
    except KeyboardInterrupt:
        _log("consumer_interrupted")
    except FatalAckError as e:
        logger.critical("acknowledgment failed, terminating: {}", e)
        sys.exit(1)
    except Exception as e:
        logger.exception("consumer failed: {}", e)
        raise


if __name__ == "__main__":
    main()
