"""Shared plumbing for the YAML file backed stores."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import os
from typing import Any, Iterator, Type, cast

from filelock import FileLock, Timeout
import yaml

try:  # pragma: no cover - depends on optional libyaml acceleration
    _YAML_DUMPER: Type[yaml.SafeDumper] = cast(  # type: ignore[misc]
        Type[yaml.SafeDumper], yaml.CSafeDumper
    )
except AttributeError:  # pragma: no cover - fallback when C bindings missing
    _YAML_DUMPER = yaml.SafeDumper

from .config import load_config
from .errors import PersistenceFailure


def resolve_store_path(
    path: str | Path | None, env_var: str, config_key: str, filename: str
) -> Path:
    """Pick a store path from the argument, environment, config or default."""

    if path is None:
        path = os.getenv(env_var)
    if path is None:
        path = load_config().get(config_key)
    if path is None:
        path = Path.home() / ".recurrence" / filename
    return Path(path)


class YamlFileStore:
    """Persist one YAML document with a cross-process file lock.

    Every public operation re-reads the file while holding the lock so
    several processes (scheduler, CLI, API) can share a store.
    """

    default: Any = None

    def __init__(self, path: Path, *, lock_timeout: float = 30.0) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout)

    def _empty(self) -> Any:
        return type(self.default)() if self.default is not None else None

    def _read(self) -> Any:
        if not self.path.exists():
            return self._empty()
        try:
            with open(self.path, "r") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            raise PersistenceFailure(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, type(self.default)):
            return self._empty()
        return data

    def _write(self, data: Any) -> None:
        rendered = yaml.dump(
            data,
            Dumper=_YAML_DUMPER,
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w") as fh:
                fh.write(rendered)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise PersistenceFailure(f"cannot write {self.path}: {exc}") from exc

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            with self._lock:
                yield
        except Timeout as exc:
            raise PersistenceFailure(f"timed out locking {self.path}") from exc
