#!/usr/bin/env python3
"""
Script de inicialización de CondoGuard
Crea la configuración por defecto, los directorios y el esquema de la base de datos
"""

import asyncio
import copy
import os
import sys
from pathlib import Path

from condoguard.core.config import (
    DEFAULT_SYSTEM_CONFIG, get_system_config_file_path, load_system_config, save_system_config
)
from condoguard.core.database import DatabaseManager
from condoguard.core.errors import StoreError

def create_default_config(config_file):
    """Crear configuración por defecto si no existe"""
    if os.path.exists(config_file):
        print(f"🔄 Existe: {config_file}")
        return True

    if save_system_config(copy.deepcopy(DEFAULT_SYSTEM_CONFIG), config_file):
        print(f"✅ Creado: {config_file}")
        return True

    print(f"❌ No se pudo escribir {config_file}")
    return False

def create_directories(config):
    """Crear estructura de directorios necesarios"""
    for dir_path in (config["data_path"], config["log_path"]):
        Path(dir_path).mkdir(parents=True, exist_ok=True)

    print("✅ Directorios creados/verificados")

async def init_database(config):
    """Inicializar esquema de la base de datos"""
    db_manager = DatabaseManager(config["data_path"], config["database_name"])
    await db_manager.init_database()
    print(f"✅ Base de datos lista: {db_manager.get_db_path()}")

def main():
    """Función principal de inicialización"""
    print("🚀 Inicializando CondoGuard...")
    print("=" * 50)

    config_file = get_system_config_file_path()
    if not create_default_config(config_file):
        return 1

    config = load_system_config(config_file)
    try:
        create_directories(config)
        asyncio.run(init_database(config))
    except (OSError, StoreError) as e:
        print(f"❌ Error durante la inicialización: {e}")
        return 1

    print("=" * 50)
    print("✅ Inicialización completada exitosamente")
    return 0

if __name__ == "__main__":
    sys.exit(main())
