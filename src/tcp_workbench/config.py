from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Literal, TypeAlias, TypeVar, cast

from .codec import ENCODINGS, FormatError, TransactionEncoding, encode

Role: TypeAlias = Literal["client", "server", "proxy"]
SchedulerMode: TypeAlias = Literal["fixed", "jittered", "on_receive"]

T = TypeVar("T", bound=str)

# Order matters: enum ordinals in JSON documents index into this tuple.
ROLES: Final[tuple[Role, ...]] = ("server", "client", "proxy")


class ConfigError(ValueError):
    """Raised when a connection definition is invalid."""


@dataclass(frozen=True, slots=True)
class Transaction:
    data: str
    encoding: TransactionEncoding = "ascii"
    append_return: bool = False
    append_newline: bool = False

    def payload_text(self) -> str:
        """Return `data` with the requested CR/LF suffix.

        The suffix is appended to the text *before* decoding, for every encoding.
        """

        text = self.data
        if self.append_return:
            text += "\r"
        if self.append_newline:
            text += "\n"
        return text

    def to_bytes(self) -> bytes:
        return encode(self.payload_text(), self.encoding)


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Definition of one connection; immutable once an instance is built from it."""

    name: str
    role: Role
    host: str = "127.0.0.1"
    port: int = 0
    remote_host: str | None = None
    remote_port: int | None = None
    auto_transactions: tuple[Transaction, ...] = field(default_factory=tuple)
    interval_ms: int | None = None
    jitter_min_ms: int | None = None
    jitter_max_ms: int | None = None
    dump_file_path: Path | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.auto_transactions, tuple):
            object.__setattr__(self, "auto_transactions", tuple(self.auto_transactions))

    @property
    def scheduler_mode(self) -> SchedulerMode:
        if self.interval_ms is None:
            return "on_receive"
        if self.jitter_min_ms is not None and self.jitter_max_ms is not None:
            return "jittered"
        return "fixed"

    @property
    def endpoint(self) -> str:
        if self.role == "proxy":
            return f":{self.port} -> {self.remote_host}:{self.remote_port}"
        if self.role == "server":
            return f":{self.port}"
        return f"{self.host}:{self.port}"

    def validate(self) -> None:
        """Check the invariants of a connection definition.

        Raises:
            ConfigError: On the first violated invariant.
        """

        if self.role not in ROLES:
            raise ConfigError(f"Unknown role {self.role!r}; expected one of {', '.join(ROLES)}")
        if self.role == "client":
            if not self.host.strip():
                raise ConfigError(f"{self.name}: client connections require a host")
            _check_port(self.name, "port", self.port, allow_zero=False)
        else:
            _check_port(self.name, "port", self.port, allow_zero=True)

        has_remote_host = bool(self.remote_host and self.remote_host.strip())
        has_remote_port = self.remote_port is not None
        if has_remote_host != has_remote_port:
            raise ConfigError(f"{self.name}: remote_host and remote_port must be set together")
        if self.role == "proxy" and not has_remote_host:
            raise ConfigError(f"{self.name}: proxy connections require remote_host and remote_port")
        if self.role != "proxy" and has_remote_host:
            raise ConfigError(f"{self.name}: remote_host/remote_port only apply to proxies")
        if self.remote_port is not None:
            _check_port(self.name, "remote_port", self.remote_port, allow_zero=False)

        if self.interval_ms is not None and self.interval_ms < 0:
            raise ConfigError(f"{self.name}: interval_ms must be >= 0")
        if (self.jitter_min_ms is None) != (self.jitter_max_ms is None):
            raise ConfigError(f"{self.name}: jitter_min_ms and jitter_max_ms must be set together")
        if self.jitter_min_ms is not None and self.jitter_max_ms is not None:
            if self.jitter_min_ms < 0:
                raise ConfigError(f"{self.name}: jitter_min_ms must be >= 0")
            if self.jitter_min_ms > self.jitter_max_ms:
                raise ConfigError(f"{self.name}: jitter_min_ms must be <= jitter_max_ms")

        for index, tx in enumerate(self.auto_transactions):
            if tx.encoding not in ENCODINGS:
                raise ConfigError(f"{self.name}: auto transaction #{index + 1} has unknown encoding")
            try:
                tx.to_bytes()
            except FormatError as exc:
                raise ConfigError(f"{self.name}: auto transaction #{index + 1}: {exc}") from exc


def _check_port(name: str, field_name: str, value: int, *, allow_zero: bool) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{name}: {field_name} must be an int, got {type(value).__name__}")
    low = 0 if allow_zero else 1
    if not (low <= value <= 0xFFFF):
        raise ConfigError(f"{name}: {field_name} must be in range {low}..65535, got {value}")


# ---------------------------------------------------------------------------
# JSON document: {"connections": [ {...}, ... ]}
# ---------------------------------------------------------------------------


def _normalize_key(key: str) -> str:
    return key.replace("_", "").lower()


def _normalized(obj: Mapping[str, Any]) -> dict[str, Any]:
    return {_normalize_key(k): v for k, v in obj.items() if isinstance(k, str)}


def _parse_choice(value: Any, choices: Sequence[T], field_name: str) -> T:
    if isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < len(choices):
            return choices[value]
        raise ConfigError(f"{field_name} ordinal out of range: {value}")
    if isinstance(value, str):
        lowered = value.strip().lower()
        for choice in choices:
            if choice == lowered:
                return choice
    raise ConfigError(f"Invalid {field_name}: {value!r}")


def _opt_int(obj: Mapping[str, Any], key: str) -> int | None:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    return value


def _opt_str(obj: Mapping[str, Any], key: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return value


def parse_transaction(obj: Any) -> Transaction:
    if not isinstance(obj, Mapping):
        raise ConfigError(f"Transaction must be an object, got {type(obj).__name__}")
    fields = _normalized(obj)
    return Transaction(
        data=_opt_str(fields, "data") or "",
        encoding=_parse_choice(fields.get("encoding", "ascii"), ENCODINGS, "encoding"),
        append_return=bool(fields.get("appendreturn", False)),
        append_newline=bool(fields.get("appendnewline", False)),
    )


def parse_connection(obj: Any) -> ConnectionConfig:
    """Build a `ConnectionConfig` from one JSON connection definition.

    Keys are matched case-insensitively and with underscores ignored, so `remoteHost`,
    `RemoteHost` and `remote_host` are equivalent. `type` is accepted for `role`.
    """

    if not isinstance(obj, Mapping):
        raise ConfigError(f"Connection must be an object, got {type(obj).__name__}")
    fields = _normalized(obj)
    role_value = fields.get("role", fields.get("type"))
    if role_value is None:
        raise ConfigError("Connection is missing 'role'")
    port = _opt_int(fields, "port")
    dump_text = _opt_str(fields, "dumpfilepath")
    raw_transactions = fields.get("autotransactions") or []
    if not isinstance(raw_transactions, list):
        raise ConfigError("autoTransactions must be a list")

    return ConnectionConfig(
        name=_opt_str(fields, "name") or "",
        role=cast(Role, _parse_choice(role_value, ROLES, "role")),
        host=_opt_str(fields, "host") or "127.0.0.1",
        port=0 if port is None else port,
        remote_host=_opt_str(fields, "remotehost") or None,
        remote_port=_opt_int(fields, "remoteport"),
        auto_transactions=tuple(parse_transaction(tx) for tx in raw_transactions),
        interval_ms=_opt_int(fields, "intervalms"),
        jitter_min_ms=_opt_int(fields, "jitterminms"),
        jitter_max_ms=_opt_int(fields, "jittermaxms"),
        dump_file_path=Path(dump_text.strip()) if dump_text and dump_text.strip() else None,
    )


def parse_app_config(obj: Any) -> list[ConnectionConfig]:
    if not isinstance(obj, Mapping):
        raise ConfigError("Configuration root must be an object")
    connections = _normalized(obj).get("connections", [])
    if not isinstance(connections, list):
        raise ConfigError("'connections' must be a list")
    configs = [parse_connection(entry) for entry in connections]
    for config in configs:
        config.validate()
    return configs


def load_app_config(path: Path) -> list[ConnectionConfig]:
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON configuration: {path} ({exc})") from exc
    return parse_app_config(obj)


def transaction_to_json(tx: Transaction) -> dict[str, Any]:
    return {
        "data": tx.data,
        "encoding": tx.encoding,
        "appendReturn": tx.append_return,
        "appendNewline": tx.append_newline,
    }


def connection_to_json(config: ConnectionConfig) -> dict[str, Any]:
    return {
        "name": config.name,
        "role": config.role,
        "host": config.host,
        "port": config.port,
        "remoteHost": config.remote_host,
        "remotePort": config.remote_port,
        "autoTransactions": [transaction_to_json(tx) for tx in config.auto_transactions],
        "intervalMs": config.interval_ms,
        "jitterMinMs": config.jitter_min_ms,
        "jitterMaxMs": config.jitter_max_ms,
        "dumpFilePath": None if config.dump_file_path is None else str(config.dump_file_path),
    }


def dump_app_config(configs: Sequence[ConnectionConfig]) -> dict[str, Any]:
    return {"connections": [connection_to_json(config) for config in configs]}


def save_app_config(path: Path, configs: Sequence[ConnectionConfig]) -> None:
    path.write_text(json.dumps(dump_app_config(configs), indent=2) + "\n", encoding="utf-8")
