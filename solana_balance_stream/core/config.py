"""
Layered configuration with YAML defaults, environment overrides, and encrypted secrets.

Configuration is merged from the packaged ``default.yaml``, an optional
``config.yaml`` and ``<ENVIRONMENT>.yaml`` in the config directory, an
optional user file, and finally ``SOLANA_STREAM_*`` environment variables.
The Helius API key can be kept in a Fernet-encrypted secrets file.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import yaml
from dotenv import load_dotenv
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_SECRETS_FILE = Path.home() / ".solana_balance_stream" / "secrets.enc"

API_KEY_SECRET = "helius_api_key"
_SENSITIVE_PARAMS = {"api-key", "api_key", "apikey"}
_SENSITIVE_KEYS = {"api_key", "apikey", "dsn"}


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


def with_api_key(url: str, api_key: Optional[str]) -> str:
    """Append ``api-key`` to ``url`` unless it already carries one."""
    if not api_key:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key in _SENSITIVE_PARAMS for key, _ in query):
        return url
    query.append(("api-key", api_key))
    return urlunsplit(parts._replace(query=urlencode(query)))


def redact_url(url: str) -> str:
    """Mask API keys in ``url`` for logging."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, "***" if key.lower() in _SENSITIVE_PARAMS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="*")))


def redact_config(data: Any, path: str = "") -> Any:
    """Return a copy of ``data`` with secrets, API keys and DSNs masked."""
    if isinstance(data, dict):
        return {key: redact_config(value, f"{path}.{key}" if path else str(key)) for key, value in data.items()}
    if isinstance(data, list):
        return [redact_config(value, path) for value in data]
    if data is None:
        return None

    name = path.rsplit('.', 1)[-1].lower().replace('-', '_')
    if path.split('.', 1)[0] == 'secrets' or name in _SENSITIVE_KEYS:
        return "***"
    if isinstance(data, str) and "://" in data:
        return redact_url(data)
    return data


class SecretManager:
    """
    Stores secrets encrypted with a local Fernet key.

    The key lives next to the secrets file and is created on first save.
    """

    def __init__(self, secrets_file: Path):
        self.secrets_file = secrets_file
        self.key_file = secrets_file.parent / ".secret_key"
        self._fernet: Optional[Fernet] = None
        self._key_created_at: Optional[datetime] = None

    def initialize(self) -> None:
        """Load the encryption key if one exists."""
        if self.key_file.exists():
            with open(self.key_file, 'r') as f:
                key_data = json.load(f)
            self._fernet = Fernet(key_data['key'].encode())
            self._key_created_at = datetime.fromisoformat(key_data['created_at'])

    def _ensure_key(self) -> Fernet:
        if self._fernet is None:
            key = Fernet.generate_key()
            self._key_created_at = datetime.now()
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.key_file, 'w') as f:
                json.dump({
                    'key': key.decode(),
                    'created_at': self._key_created_at.isoformat()
                }, f)
            os.chmod(self.key_file, 0o600)
            self._fernet = Fernet(key)
            logger.info("Generated new local encryption key")
        return self._fernet

    def load_secrets(self) -> Dict[str, Any]:
        """Load and decrypt secrets from file."""
        if not self.secrets_file.exists():
            return {}

        if self._fernet is None:
            raise ConfigError(f"Secrets file {self.secrets_file} exists but no key was found")

        with open(self.secrets_file, 'rb') as f:
            encrypted_data = f.read()

        try:
            decrypted_data = self._fernet.decrypt(encrypted_data)
        except InvalidToken as e:
            raise ConfigError(f"Failed to decrypt {self.secrets_file}") from e

        secrets = json.loads(decrypted_data.decode())
        logger.debug(f"Loaded {len(secrets)} secrets")
        return secrets

    def save_secrets(self, secrets: Dict[str, Any]) -> None:
        """Encrypt and save secrets to file."""
        fernet = self._ensure_key()
        encrypted_data = fernet.encrypt(json.dumps(secrets).encode())

        self.secrets_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.secrets_file, 'wb') as f:
            f.write(encrypted_data)
        os.chmod(self.secrets_file, 0o600)

        logger.debug(f"Saved {len(secrets)} secrets")

    def get_secret(self, key: str) -> Optional[str]:
        return self.load_secrets().get(key)

    def set_secret(self, key: str, value: str) -> None:
        secrets = self.load_secrets()
        secrets[key] = value
        self.save_secrets(secrets)

    def delete_secret(self, key: str) -> bool:
        secrets = self.load_secrets()
        if key in secrets:
            del secrets[key]
            self.save_secrets(secrets)
            return True
        return False


class ConfigManager:
    """
    Configuration manager for the balance streamer.

    Values are read with dot notation, e.g. ``get("stream.reconnect_delay")``.
    """

    def __init__(
        self,
        config_dir: Path = None,
        config_file: Optional[Path] = None,
        secrets_file: Path = None,
        env_prefix: str = "SOLANA_STREAM"
    ):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_file = Path(config_file) if config_file else None
        self.secrets_file = Path(secrets_file) if secrets_file else DEFAULT_SECRETS_FILE
        self.env_prefix = env_prefix

        self._config: Dict[str, Any] = {}
        self._secret_manager = SecretManager(self.secrets_file)
        self._loaded = False

    def initialize(self) -> None:
        """Load configuration from all sources."""
        load_dotenv()
        self._secret_manager.initialize()
        self.load_config()
        self._loaded = True

    def load_config(self) -> None:
        """Load configuration from all sources."""
        self._config = {}
        self._load_yaml_config()
        self._apply_env_overrides()
        self._load_secrets()
        logger.debug(f"Loaded configuration with {len(self._config)} top-level keys")

    def _load_yaml_config(self) -> None:
        config_files = [
            DEFAULT_CONFIG_DIR / "default.yaml",
            self.config_dir / "default.yaml",
            self.config_dir / "config.yaml",
        ]

        env = os.getenv("ENVIRONMENT", "development")
        config_files.append(self.config_dir / f"{env}.yaml")

        if self.config_file is not None:
            if not self.config_file.exists():
                raise ConfigError(f"Config file not found: {self.config_file}")
            config_files.append(self.config_file)

        seen = set()
        for config_file in config_files:
            resolved = config_file.resolve()
            if resolved in seen or not config_file.exists():
                continue
            seen.add(resolved)

            try:
                with open(config_file, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse {config_file}: {e}") from e

            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file {config_file} must contain a mapping")

            self._merge_config(self._config, file_config)
            logger.debug(f"Loaded config from {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply ``PREFIX_SECTION__KEY=value`` overrides."""
        prefix = f"{self.env_prefix}_"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = key[len(prefix):].lower().replace('__', '.')
                self._set_nested_value(self._config, config_key, value)
                logger.debug(f"Applied env override: {config_key}")

    def _load_secrets(self) -> None:
        secrets = self._secret_manager.load_secrets()
        if secrets:
            self._config['secrets'] = secrets

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_config(target[key], value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value)

    def _convert_value(self, value: Any) -> Any:
        """Convert string value to appropriate type."""
        if not isinstance(value, str):
            return value

        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        if value.lower() in ('none', 'null'):
            return None

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        self._set_nested_value(self._config, key, value)

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        if not self._loaded:
            return False

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return False

        return True

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration (excluding secrets)."""
        config = dict(self._config)
        config.pop('secrets', None)
        return config

    def get_secret(self, key: str) -> Optional[str]:
        return self._secret_manager.get_secret(key)

    def set_secret(self, key: str, value: str) -> None:
        self._secret_manager.set_secret(key, value)
        self._config.setdefault('secrets', {})[key] = value

    def delete_secret(self, key: str) -> bool:
        self._config.get('secrets', {}).pop(key, None)
        return self._secret_manager.delete_secret(key)

    def api_key(self) -> Optional[str]:
        """Helius API key from secrets or ``rpc.api_key``."""
        return self.get(f"secrets.{API_KEY_SECRET}") or self.get("rpc.api_key")

    def http_url(self) -> str:
        url = self.get("rpc.http_url")
        if not url:
            raise ConfigError("rpc.http_url is not configured")
        return with_api_key(url, self.api_key())

    def ws_url(self) -> str:
        url = self.get("rpc.ws_url")
        if not url:
            raise ConfigError("rpc.ws_url is not configured")
        return with_api_key(url, self.api_key())
