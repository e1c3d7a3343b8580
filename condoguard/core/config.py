import copy
import json
import os
from typing import Dict, Optional

from loguru import logger

DEFAULT_CONFIG_FILE = "./config/system.json"

DEFAULT_SYSTEM_CONFIG = {
    "data_path": "./data",
    "log_path": "./logs",
    "database_name": "condoguard.db",
    "log_level": "INFO",
    "alert_poll_interval": 30,
    "timeouts": {
        "store": 5.0,
        "oracle": 30.0,
        "petition_store": 10.0
    },
    "oracle": {
        "provider": "keyword",
        "endpoint": "",
        "api_key": ""
    },
    "image": {
        "max_side": 1024,
        "jpeg_quality": 85
    }
}


def get_system_config_file_path() -> str:
    return os.getenv("CONDOGUARD_CONFIG", DEFAULT_CONFIG_FILE)


def _merge(base: Dict, override: Dict) -> Dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_system_config(config_file: Optional[str] = None) -> Dict:
    """Cargar configuración del sistema sobre los valores por defecto"""
    config_file = config_file or get_system_config_file_path()
    config = copy.deepcopy(DEFAULT_SYSTEM_CONFIG)

    try:
        if os.path.exists(config_file):
            with open(config_file, "r") as f:
                config = _merge(config, json.load(f))
                logger.debug(f"📄 Config cargada: {config_file}")
    except (OSError, ValueError) as e:
        logger.error(f"Error cargando config sistema: {e}")

    data_path = os.getenv("CONDOGUARD_DATA_PATH")
    if data_path:
        config["data_path"] = data_path

    return config


def save_system_config(config: Dict, config_file: Optional[str] = None) -> bool:
    """Guardar configuración del sistema"""
    config_file = config_file or get_system_config_file_path()
    try:
        config_dir = os.path.dirname(config_file)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(config_file, "w") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        logger.error(f"Error guardando config sistema: {e}")
        return False
