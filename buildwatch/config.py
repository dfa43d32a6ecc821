import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple

import toml
import yaml

DEFAULT_CONFIG_PATH = "./buildwatch.toml"
CONFIG_FILENAME = "buildwatch.toml"
ENV_CONFIG_DIR_VAR = "BUILDWATCH_CONFIG_DIR"


@dataclass(frozen=True)
class WatchSettings:
    """
    Tunables of a watch session.

    Attributes:
        debounce_ms: Quiet window before a path counts as settled.
        tick_ms: How often pending changes are checked.
        lookback_seconds: Changes this long before start are still reported.
        case_sensitive: Whether ignore patterns distinguish letter case.
        polling: Use a polling observer instead of native OS events.
        ignore: Ignore patterns applied in addition to the per-call ones.
    """

    debounce_ms: int = 300
    tick_ms: int = 50
    lookback_seconds: float = 10.0
    case_sensitive: bool = True
    polling: bool = False
    ignore: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.debounce_ms < 0:
            raise ValueError("debounce_ms must not be negative")
        if self.tick_ms <= 0:
            raise ValueError("tick_ms must be positive")
        if self.lookback_seconds < 0:
            raise ValueError("lookback_seconds must not be negative")
        if isinstance(self.ignore, str):
            object.__setattr__(self, "ignore", (self.ignore,))
        else:
            object.__setattr__(self, "ignore", tuple(self.ignore))

    @property
    def quiet_window(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def tick_interval(self) -> float:
        return self.tick_ms / 1000.0

    def replace(self, **changes) -> "WatchSettings":
        """Return a copy with the given fields changed. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WatchSettings":
        """
        Build settings from a config table such as ``[watch]``.

        Unknown keys are ignored so a config file can carry keys meant for
        other tools.
        """
        if not data:
            return cls()
        return cls(**{k: v for k, v in data.items() if k in _SETTING_NAMES})


_SETTING_NAMES = frozenset(f.name for f in fields(WatchSettings))


@dataclass(frozen=True)
class WatchGroup:
    """A named set of roots and ignore patterns from a watch groups file."""

    name: str
    roots: Tuple[str, ...]
    ignore: Tuple[str, ...] = ()
    settings: WatchSettings = field(default_factory=WatchSettings)


def load_config(cli_config_path=None):
    """
    Load configuration from a TOML file.

    Precedence:
      1. cli_config_path if provided.
      2. Environment variable BUILDWATCH_CONFIG_DIR (looking for buildwatch.toml).
      3. Default to ./buildwatch.toml.

    A missing file is an error in the first two cases. A missing default file
    means "no configuration" and yields an empty dict.

    Returns:
        dict: The configuration settings.
    """
    if cli_config_path:
        config_path = cli_config_path
    elif os.environ.get(ENV_CONFIG_DIR_VAR):
        config_path = os.path.join(os.environ[ENV_CONFIG_DIR_VAR], CONFIG_FILENAME)
    else:
        config_path = DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        if config_path == DEFAULT_CONFIG_PATH:
            return {}
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config_data = toml.load(f)

    return config_data


def _read_group_entries(file_path):
    """The raw dicts listed under ``watch_groups`` in one YAML file."""
    with open(file_path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{file_path}: expected a mapping with a 'watch_groups' list")
    return list(data.get("watch_groups") or [])


def load_watch_groups(path, defaults: Optional[WatchSettings] = None) -> List[WatchGroup]:
    """
    Load watch groups from a YAML file, or from every .yaml/.yml file of a
    directory in name order.

    Raises:
        FileNotFoundError: If path does not exist.
        ValueError: If a file or a group is malformed.
    """
    if os.path.isdir(path):
        files = [os.path.join(path, name) for name in sorted(os.listdir(path))
                 if name.endswith((".yaml", ".yml"))]
    elif os.path.exists(path):
        files = [path]
    else:
        raise FileNotFoundError(f"Watch groups configuration not found: {path}")

    entries = []
    for file_path in files:
        entries.extend(_read_group_entries(file_path))
    return parse_watch_groups(entries, defaults)


def parse_watch_groups(entries, defaults: Optional[WatchSettings] = None) -> List[WatchGroup]:
    """
    Turn raw watch group dicts into WatchGroup objects.

    Each group needs a ``roots`` list; ``name`` and ``ignore`` are optional
    and any WatchSettings field may be overridden per group.

    Raises:
        ValueError: If a group is not a mapping, has no roots, or two groups
            share a name.
    """
    defaults = defaults or WatchSettings()
    groups = []
    seen = set()
    for index, raw in enumerate(entries):
        if not isinstance(raw, dict):
            raise ValueError(f"Watch group #{index + 1} must be a mapping, got {raw!r}")
        name = str(raw.get("name") or f"group-{index + 1}")
        if name in seen:
            raise ValueError(f"Duplicate watch group name: {name}")
        seen.add(name)

        roots = raw.get("roots") or []
        if isinstance(roots, str):
            roots = [roots]
        if not roots:
            raise ValueError(f"Watch group '{name}' has no roots")
        roots = tuple(os.path.expandvars(os.path.expanduser(r)) for r in roots)

        ignore = raw.get("ignore") or []
        if isinstance(ignore, str):
            ignore = [ignore]

        # "ignore" on a group adds to the global patterns instead of replacing them.
        overrides = {k: v for k, v in raw.items() if k in _SETTING_NAMES and k != "ignore"}
        settings = defaults.replace(**overrides)

        groups.append(WatchGroup(name=name, roots=roots, ignore=tuple(ignore), settings=settings))
    return groups


def watch_groups_path(cfg, config_path=None):
    """Path of the watch groups file named by ``[watch_groups] configs_dir``, relative to the config file."""
    path = cfg.get("watch_groups", {}).get("configs_dir", "watch_groups.yaml")
    if config_path and not os.path.isabs(path):
        path = os.path.join(os.path.dirname(os.path.abspath(config_path)), path)
    return path
