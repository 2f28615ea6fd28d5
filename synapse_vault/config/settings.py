"""
Configuration Management System
===============================

Provides dataclass-based configuration with YAML file loading support.
All settings are validated and have sensible defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any, Dict
import yaml

from synapse_vault.utils.logging_config import get_logger
from synapse_vault.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

APP_HOME = Path.home() / ".synapse_vault"
DEFAULT_CONFIG_PATH = APP_HOME / "settings.yaml"

SUPPORTED_KDF_ALGORITHMS = ("pbkdf2-sha256", "argon2id")
SUPPORTED_THEMES = ("dark", "light")


def _int_setting(data: Dict[str, Any], key: str, default: int) -> int:
    """Read an integer setting, raising ConfigurationError on bad values."""
    value = data.get(key, default)
    try:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ValueError(f"{value!r} is not an integer")
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}",
            config_key=key,
            expected_type="int",
            cause=e,
        )


@dataclass
class StorageConfig:
    """Vault storage location.

    Attributes:
        storage_path: Root directory holding master.key, metadata.json and files/.
        trash_after_relocation: Send the old root to the trash after a
            relocation instead of deleting it.
    """
    storage_path: Path = field(default_factory=lambda: APP_HOME / "synapse-data")
    trash_after_relocation: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        """Create StorageConfig from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        storage_path = data.get("storage_path")
        return cls(
            storage_path=Path(storage_path).expanduser() if storage_path else defaults.storage_path,
            trash_after_relocation=bool(data.get("trash_after_relocation", False)),
        )


@dataclass
class SecurityConfig:
    """Key derivation and deletion settings.

    Attributes:
        kdf_algorithm: Algorithm used when a password is newly set.
        pbkdf2_iterations: PBKDF2-HMAC-SHA256 iteration count.
        argon2_memory_cost: Argon2 memory cost in KB.
        argon2_time_cost: Argon2 iteration count.
        argon2_parallelism: Argon2 parallelism degree.
        secure_delete_passes: Overwrite passes for decrypted temp copies.
    """
    kdf_algorithm: str = "pbkdf2-sha256"
    pbkdf2_iterations: int = 100000
    argon2_memory_cost: int = 65536  # 64MB
    argon2_time_cost: int = 3
    argon2_parallelism: int = 4
    secure_delete_passes: int = 1

    def __post_init__(self):
        if self.kdf_algorithm not in SUPPORTED_KDF_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported key derivation algorithm: {self.kdf_algorithm}",
                config_key="security.kdf_algorithm",
                expected_type=" | ".join(SUPPORTED_KDF_ALGORITHMS),
            )
        if self.pbkdf2_iterations < 100000:
            raise ConfigurationError(
                "pbkdf2_iterations must be at least 100000",
                config_key="security.pbkdf2_iterations",
                expected_type="int >= 100000",
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityConfig":
        """Create SecurityConfig from dictionary."""
        if not data:
            return cls()
        return cls(
            kdf_algorithm=data.get("kdf_algorithm", cls.kdf_algorithm),
            pbkdf2_iterations=_int_setting(data, "pbkdf2_iterations", cls.pbkdf2_iterations),
            argon2_memory_cost=_int_setting(data, "argon2_memory_cost", cls.argon2_memory_cost),
            argon2_time_cost=_int_setting(data, "argon2_time_cost", cls.argon2_time_cost),
            argon2_parallelism=_int_setting(data, "argon2_parallelism", cls.argon2_parallelism),
            secure_delete_passes=_int_setting(data, "secure_delete_passes", cls.secure_delete_passes)
        )


@dataclass
class AppConfig:
    """User interface preferences carried for the UI layer.

    Attributes:
        theme: Color theme ("dark" or "light").
        language: Interface language code.
    """
    theme: str = "dark"
    language: str = "en"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create AppConfig from dictionary."""
        if not data:
            return cls()
        theme = data.get("theme", cls.theme)
        if theme not in SUPPORTED_THEMES:
            logger.warning(f"Unknown theme '{theme}', falling back to {cls.theme}")
            theme = cls.theme
        return cls(theme=theme, language=data.get("language", cls.language))


@dataclass
class LogSettings:
    """Logging preferences.

    Attributes:
        level: Log level name.
        log_dir: Directory for the rotating log file.
        file_output: Whether to write the log file.
    """
    level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: APP_HOME / "logs")
    file_output: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogSettings":
        """Create LogSettings from dictionary."""
        if not data:
            return cls()
        defaults = cls()
        return cls(
            level=str(data.get("level", defaults.level)).upper(),
            log_dir=Path(data.get("log_dir", defaults.log_dir)).expanduser(),
            file_output=bool(data.get("file_output", defaults.file_output)),
        )


@dataclass
class Config:
    """Main configuration container.

    Aggregates all configuration sections and provides loading from YAML.
    """
    storage: StorageConfig = field(default_factory=StorageConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    app: AppConfig = field(default_factory=AppConfig)
    logging: LogSettings = field(default_factory=LogSettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to the configuration file. If None, uses
                        ~/.synapse_vault/settings.yaml.

        Returns:
            Config instance with loaded settings.

        Raises:
            ConfigurationError: If the file is not valid YAML or holds
                invalid values.
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH
        config_path = Path(config_path)

        if not config_path.exists():
            logger.info(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise ConfigurationError(
                f"Invalid YAML in {config_path}", cause=e
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config root must be a mapping in {config_path}",
                expected_type="mapping",
            )

        logger.debug(f"Loaded configuration from {config_path}")
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            storage=StorageConfig.from_dict(data.get("storage", {})),
            security=SecurityConfig.from_dict(data.get("security", {})),
            app=AppConfig.from_dict(data.get("app", {})),
            logging=LogSettings.from_dict(data.get("logging", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain YAML-safe types."""
        return {
            "storage": {
                "storage_path": str(self.storage.storage_path),
                "trash_after_relocation": self.storage.trash_after_relocation,
            },
            "security": {
                "kdf_algorithm": self.security.kdf_algorithm,
                "pbkdf2_iterations": self.security.pbkdf2_iterations,
                "argon2_memory_cost": self.security.argon2_memory_cost,
                "argon2_time_cost": self.security.argon2_time_cost,
                "argon2_parallelism": self.security.argon2_parallelism,
                "secure_delete_passes": self.security.secure_delete_passes,
            },
            "app": {
                "theme": self.app.theme,
                "language": self.app.language,
            },
            "logging": {
                "level": self.logging.level,
                "log_dir": str(self.logging.log_dir),
                "file_output": self.logging.file_output,
            },
        }

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path where to save the configuration.
        """
        config_path = Path(config_path or DEFAULT_CONFIG_PATH)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = config_path.with_name(config_path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        tmp_path.replace(config_path)

        logger.info(f"Saved configuration to {config_path}")
