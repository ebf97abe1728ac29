import argparse
import asyncio
import importlib
import pkgutil

from pydantic import ValidationError

import services.error as error
import services.logger as log
import services.config as config
from services.config_schema import AppConfig

import drivers as _drivers_pkg

l = log.get_logger()


def _load_all_drivers() -> None:
    """Import every module in the ``drivers/`` package.

    Each driver module calls ``drivers.registry.register()`` at import time.
    The ``registry`` module itself is skipped to avoid a circular bootstrap.
    """
    for _, mod_name, _ in pkgutil.iter_modules(_drivers_pkg.__path__):
        if mod_name != "registry":
            importlib.import_module(f"drivers.{mod_name}")


def build_drivers(raw: dict) -> list:
    """Validate *raw* config and return one driver per configured instance.

    Returns an empty list when any block fails validation; every error is
    logged first so they can all be fixed in one pass.
    """
    from drivers.registry import all_drivers

    try:
        app_config = AppConfig.model_validate(raw)
    except ValidationError as exc:
        l.critical(f"Config error:\n{exc}")
        return []

    registry = all_drivers()
    instances = []
    config_ok = True

    for platform, (config_cls, driver_cls) in registry.items():
        for inst_id, inst_raw in (raw.get(platform) or {}).items():
            try:
                cfg = config_cls.model_validate(inst_raw)
            except ValidationError as exc:
                l.critical(f"Config error in {platform}.{inst_id}:\n{exc}")
                config_ok = False
                continue
            instances.append((f"{platform}/{inst_id}", driver_cls(inst_id, cfg, app_config.vision)))

    return instances if config_ok else []


async def main():
    _load_all_drivers()

    l.info("OCR bot starting…")

    raw = config.load_raw_config()
    log.register_sensitive(config.sensitive_values(raw))

    instances = build_drivers(raw)
    if not instances:
        l.error("No usable driver configuration, exiting.")
        return

    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            l.error(f"Driver '{task.get_name()}' crashed: {exc}")

    driver_tasks: list[asyncio.Task] = []
    for name, drv in instances:
        task = asyncio.create_task(drv.start(), name=name)
        task.add_done_callback(_on_task_done)
        driver_tasks.append(task)
        l.info(f"Registered driver: {name}")

    try:
        results = await asyncio.gather(*driver_tasks, return_exceptions=True)
        for task, result in zip(driver_tasks, results):
            if isinstance(result, Exception):
                l.error(f"Driver '{task.get_name()}' exited with error: {result}")
    except asyncio.CancelledError:
        l.info("OCR bot shutting down…")
        for task in driver_tasks:
            task.cancel()
        await asyncio.gather(*driver_tasks, return_exceptions=True)
        l.info("OCR bot stopped.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="ocrbot", description="Chat bot that reads text out of images")
    parser.add_argument("--log-dir", help="Also write DEBUG logs to this directory")
    args = parser.parse_args()

    error.install_excepthook()
    log_file = log.enable_file_logging(args.log_dir)
    l.info(f"Writing logs to {log_file}")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
