import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

FORMAT = (
    "%(asctime)s | %(levelname)-7s | %(name)s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)
formatter = logging.Formatter(FORMAT)

# Set by setup_logging(); per-addon files are only written once logging is configured.
_LOG_DIR: Optional[Path] = None


def _file_handler(path: Path, level=logging.INFO) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    for h in logger.handlers:
        if getattr(h, "baseFilename", None) == getattr(handler, "baseFilename", None):
            return
    logger.addHandler(handler)


@contextmanager
def addon_log(addon_id: str) -> Iterator[logging.Logger]:
    """
    Logger for one lifecycle operation on a single addon. While the block runs,
    records also go to addons/<id>.log (when file logging is configured); the
    file is closed on exit. Records always propagate to addonhost.addons.
    """
    logger = logging.getLogger(f"addonhost.addons.instance.{addon_id}")
    handler = None
    if _LOG_DIR is not None:
        handler = _file_handler(_LOG_DIR / "addons" / f"{addon_id}.log")
        logger.addHandler(handler)
    try:
        yield logger
    finally:
        if handler is not None:
            logger.removeHandler(handler)
            handler.close()


def setup_logging(log_dir: Path = Path("logs")) -> None:
    global _LOG_DIR

    log_dir.mkdir(parents=True, exist_ok=True)
    (log_dir / "addons").mkdir(exist_ok=True)
    _LOG_DIR = log_dir

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # --- Core ---
    core_handler = _file_handler(log_dir / "core.log")

    core_parent = logging.getLogger("backend.app")
    _attach(core_parent, core_handler)
    core_parent.propagate = False

    addonhost_parent = logging.getLogger("addonhost")
    _attach(addonhost_parent, core_handler)
    addonhost_parent.propagate = False

    # --- Addons (lifecycle, catalog, registry) ---
    addons_handler = _file_handler(log_dir / "addons" / "addons.log", level=logging.DEBUG)

    addons_parent = logging.getLogger("addonhost.addons")
    _attach(addons_parent, addons_handler)
    addons_parent.propagate = False

    # --- Container engine ---
    runtime_handler = _file_handler(log_dir / "runtime.log", level=logging.DEBUG)

    runtime_parent = logging.getLogger("addonhost.runtime")
    _attach(runtime_parent, runtime_handler)
    runtime_parent.propagate = False

    # --- Proxy ---
    proxy_handler = _file_handler(log_dir / "proxy.log")

    proxy_parent = logging.getLogger("addonhost.proxy")
    _attach(proxy_parent, proxy_handler)
    proxy_parent.propagate = False

    # --- Uvicorn ---
    uvicorn_handler = _file_handler(log_dir / "uvicorn.log")
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        ul = logging.getLogger(name)
        _attach(ul, uvicorn_handler)
        ul.propagate = False
