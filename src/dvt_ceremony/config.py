"""
Node configuration for the ceremony coordinator
Explicit configuration value constructed once and passed to every component
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "DVT_CEREMONY_"

DEFAULT_IMAGE = "obolnetwork/charon:v1.1.1"
DEFAULT_CONTAINER_DATA_DIR = "/opt/charon"
DEFAULT_IDENTITY_PREFIX = "enr:-"
DEFAULT_FEE_RECIPIENT_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_WITHDRAWAL_ADDRESS = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


@dataclass
class TransportConfig:
    """NATS transport configuration"""
    servers: List[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    subject_prefix: str = "dvt"
    max_reconnect_attempts: int = 5
    reconnect_wait: float = 2.0
    connection_timeout: float = 10.0
    presence_interval: float = 2.0


@dataclass
class ProtocolConfig:
    """Receive deadlines and resend policy for the coordination protocol"""
    # None waits forever on each receive
    receive_timeout: Optional[float] = 120.0
    max_receive_attempts: int = 5
    resend_base_delay: float = 1.0
    resend_max_delay: float = 30.0


@dataclass
class NodeConfig:
    """Configuration for one participating node"""
    position: int
    operator_count: int
    data_dir: Path = field(default_factory=lambda: Path("data"))
    ceremony_name: str = "Example"
    validator_count: int = 1
    fee_recipient_address: str = DEFAULT_FEE_RECIPIENT_ADDRESS
    withdrawal_address: str = DEFAULT_WITHDRAWAL_ADDRESS
    image: str = DEFAULT_IMAGE
    container_data_dir: str = DEFAULT_CONTAINER_DATA_DIR
    identity_prefix: str = DEFAULT_IDENTITY_PREFIX
    compose_command: List[str] = field(default_factory=lambda: ["docker", "compose"])
    compose_service: str = "charon"
    transport: TransportConfig = field(default_factory=TransportConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    peer_public_keys: Dict[int, str] = field(default_factory=dict)

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)

    @property
    def is_leader(self) -> bool:
        """Leadership is fixed by ordinal position"""
        return self.position == 0

    @property
    def expected_peer_count(self) -> int:
        """Number of peers other than this node"""
        return self.operator_count - 1

    def validate(self) -> "NodeConfig":
        """
        Validate configuration values

        Returns:
            self, to allow chaining

        Raises:
            ConfigurationError: If any value is out of range
        """
        if self.operator_count < 1:
            raise ConfigurationError(f"operator_count must be >= 1, got {self.operator_count}")
        if not 0 <= self.position < self.operator_count:
            raise ConfigurationError(
                f"position {self.position} out of range for {self.operator_count} operators"
            )
        if self.validator_count < 1:
            raise ConfigurationError(f"validator_count must be >= 1, got {self.validator_count}")
        if self.protocol.max_receive_attempts < 1:
            raise ConfigurationError("protocol.max_receive_attempts must be >= 1")
        if not self.transport.servers:
            raise ConfigurationError("At least one transport server is required")
        for ordinal in self.peer_public_keys:
            if not 0 <= ordinal < self.operator_count:
                raise ConfigurationError(f"peer_public_keys has unknown ordinal {ordinal}")
        return self

    def ensure_data_dir(self) -> Path:
        """Create the data directory if missing and return its absolute path"""
        if not self.data_dir.exists():
            logger.warning(f"Data dir {self.data_dir} does not exist, creating it")
            self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir.resolve()

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the configuration"""
        data = asdict(self)
        data["data_dir"] = str(self.data_dir)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeConfig":
        """Build configuration from a plain dictionary"""
        data = dict(data)
        transport = data.pop("transport", None) or {}
        protocol = data.pop("protocol", None) or {}
        peer_keys = data.pop("peer_public_keys", None) or {}
        try:
            return cls(
                transport=TransportConfig(**transport),
                protocol=ProtocolConfig(**protocol),
                peer_public_keys={int(k): v for k, v in peer_keys.items()},
                **data
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "NodeConfig":
        """
        Load configuration from DVT_CEREMONY_* environment variables

        A JSON file named by DVT_CEREMONY_CONFIG_FILE is loaded first;
        environment values override file values.

        Args:
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Validated node configuration
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        config_file = env.get(f"{ENV_PREFIX}CONFIG_FILE")
        if config_file:
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                logger.info(f"Loaded node configuration from {config_file}")
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Failed to load {config_file}: {e}") from e

        transport = dict(data.get("transport") or {})
        protocol = dict(data.get("protocol") or {})

        def _get(name: str) -> Optional[str]:
            return env.get(f"{ENV_PREFIX}{name}")

        try:
            int_fields = {
                "POSITION": "position",
                "OPERATOR_COUNT": "operator_count",
                "VALIDATOR_COUNT": "validator_count",
            }
            for env_name, key in int_fields.items():
                value = _get(env_name)
                if value is not None:
                    data[key] = int(value)

            str_fields = {
                "DATA_DIR": "data_dir",
                "NAME": "ceremony_name",
                "IMAGE": "image",
                "FEE_RECIPIENT_ADDRESS": "fee_recipient_address",
                "WITHDRAWAL_ADDRESS": "withdrawal_address",
                "COMPOSE_SERVICE": "compose_service",
            }
            for env_name, key in str_fields.items():
                value = _get(env_name)
                if value is not None:
                    data[key] = value

            compose = _get("COMPOSE_COMMAND")
            if compose:
                data["compose_command"] = compose.split()

            servers = _get("NATS_SERVERS")
            if servers:
                transport["servers"] = [s.strip() for s in servers.split(",") if s.strip()]
            prefix = _get("SUBJECT_PREFIX")
            if prefix:
                transport["subject_prefix"] = prefix

            timeout = _get("RECEIVE_TIMEOUT")
            if timeout is not None:
                protocol["receive_timeout"] = None if timeout.lower() in ("", "none", "0") else float(timeout)
            attempts = _get("RECEIVE_ATTEMPTS")
            if attempts is not None:
                protocol["max_receive_attempts"] = int(attempts)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment value: {e}") from e

        if "position" not in data or "operator_count" not in data:
            raise ConfigurationError(
                f"{ENV_PREFIX}POSITION and {ENV_PREFIX}OPERATOR_COUNT are required"
            )

        data["transport"] = transport
        data["protocol"] = protocol
        return cls.from_dict(data).validate()
