import logging
import yaml
from rich.console import Console
from rich.logging import RichHandler


def load_yaml(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}

def coalesce(*args):
    for a in args:
        if a is not None and a != "":
            return a
    return None

def env_bool(val: str | None, default: bool = False) -> bool:
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")

def normalize_path(path: str) -> str:
    """Windows-style comparison key: backslashes, lower case, no trailing separator."""
    p = (path or "").replace("/", "\\").lower()
    if len(p) > 1 and p.endswith("\\") and not p.endswith(":\\"):
        p = p.rstrip("\\")
    return p

def setup_logging(level: str = "INFO", console: Console | None = None) -> None:
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
