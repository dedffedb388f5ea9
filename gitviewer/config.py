import os
import tomllib
from pathlib import Path
from typing import Dict, Optional

CONFIG_PATH = Path(os.environ.get("GIT_VIEWER_CONFIG", "gitviewer.toml"))
DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_PAGES_BRANCH = "gh-pages"
DEFAULT_INDEX_DOCUMENT = "index.html"
DEFAULT_COMMIT_LIMIT = 50
DEFAULT_MAX_PREVIEW_BYTES = 200 * 1024

_TABLES = ("server", "pages", "viewer")


def load_config(path: Optional[Path] = None) -> Dict[str, Dict[str, object]]:
    """Read the TOML configuration file, returning empty tables when it is absent."""
    config_path = path or CONFIG_PATH
    if not config_path.exists():
        return {table: {} for table in _TABLES}

    with config_path.open("rb") as config_file:
        try:
            data = tomllib.load(config_file)
        except tomllib.TOMLDecodeError as exc:  # noqa: BLE001
            raise RuntimeError(f"Failed to parse configuration file {config_path}: {exc}") from exc

    config: Dict[str, Dict[str, object]] = {}
    for table in _TABLES:
        value = data.get(table, {})
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise RuntimeError(f"Configuration file '{table}' must be a table if provided")
        config[table] = value
    return config


def parse_port(value: object) -> int:
    """Accept an int or a numeric string naming a TCP port (1-65535)."""
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        raise RuntimeError(f"Server port must be an integer between 1 and 65535, got {value!r}")
    return value


def _positive_int(value: object, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise RuntimeError(f"Configuration value '{key}' must be a positive integer, got {value!r}")
    return value


def _non_empty_str(value: object, key: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RuntimeError(f"Configuration value '{key}' must be a non-empty string")
    return value.strip()


def resolve_server_bind(
    config: Dict[str, Dict[str, object]],
    bind_override: Optional[str] = None,
    port_override: Optional[int] = None,
) -> tuple[str, int]:
    server_config = config.get("server", {})
    env_bind = os.environ.get("GIT_VIEWER_BIND", "").strip()
    env_port = os.environ.get("GIT_VIEWER_PORT", "").strip()
    bind = bind_override or env_bind or server_config.get("bind", DEFAULT_BIND)
    port_source = port_override if port_override is not None else env_port or server_config.get("port", DEFAULT_PORT)
    return _non_empty_str(bind, "server.bind"), parse_port(port_source)


def resolve_pages_settings(
    config: Dict[str, Dict[str, object]],
    branch_override: Optional[str] = None,
) -> tuple[str, str]:
    pages_config = config.get("pages", {})
    branch = branch_override or pages_config.get("default_branch", DEFAULT_PAGES_BRANCH)
    index_document = pages_config.get("index_document", DEFAULT_INDEX_DOCUMENT)
    index_document = _non_empty_str(index_document, "pages.index_document")
    if "/" in index_document:
        raise RuntimeError("Configuration value 'pages.index_document' must be a file name, not a path")
    return _non_empty_str(branch, "pages.default_branch"), index_document


def resolve_viewer_limits(config: Dict[str, Dict[str, object]]) -> tuple[int, int]:
    viewer_config = config.get("viewer", {})
    commit_limit = viewer_config.get("commit_limit", DEFAULT_COMMIT_LIMIT)
    max_preview = viewer_config.get("max_preview_bytes", DEFAULT_MAX_PREVIEW_BYTES)
    return (
        _positive_int(commit_limit, "viewer.commit_limit"),
        _positive_int(max_preview, "viewer.max_preview_bytes"),
    )
