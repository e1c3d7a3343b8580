import argparse
import os
import sqlite3
import tarfile
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

from loguru import logger

from condoguard.core.config import get_system_config_file_path, load_system_config

class BackupManager:
    """Gestor de respaldos de datos y configuración"""

    def __init__(self, data_dir="./data", config_dir="./config", backup_dir="./backups",
                 database_name="condoguard.db"):
        self.data_dir = Path(data_dir)
        self.config_dir = Path(config_dir)
        self.backup_dir = Path(backup_dir)
        self.database_name = database_name
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, backup_dir="./backups"):
        config_file = get_system_config_file_path()
        config = load_system_config(config_file)
        return cls(
            data_dir=config["data_path"],
            config_dir=os.path.dirname(config_file) or ".",
            backup_dir=backup_dir,
            database_name=config["database_name"],
        )

    def create_backup(self, backup_type="full"):
        """Crear respaldo"""
        if backup_type not in ("full", "data", "config"):
            raise ValueError(f"Tipo de respaldo no válido: {backup_type}")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_file = self.backup_dir / f"{backup_type}_backup_{timestamp}.tar.gz"

        with tarfile.open(backup_file, "w:gz") as tar:
            if backup_type in ("full", "data"):
                self._add_data(tar)
            if backup_type in ("full", "config") and self.config_dir.exists():
                tar.add(self.config_dir, arcname="config")

        logger.info(f"✅ Respaldo creado: {backup_file}")
        return backup_file

    def _add_data(self, tar):
        """Agregar datos; la base SQLite se copia con la API de respaldo para incluir el WAL"""
        if not self.data_dir.exists():
            return

        db_path = self.data_dir / self.database_name
        with tempfile.TemporaryDirectory() as tmp_dir:
            if db_path.exists():
                snapshot = Path(tmp_dir) / self.database_name
                source = sqlite3.connect(db_path)
                target = sqlite3.connect(snapshot)
                try:
                    source.backup(target)
                finally:
                    target.close()
                    source.close()
                tar.add(snapshot, arcname=f"data/{self.database_name}")

            tar.add(self.data_dir, arcname="data", filter=self._exclude_live_db)

    def _exclude_live_db(self, tarinfo):
        """Excluir logs y los archivos vivos de SQLite"""
        name = os.path.basename(tarinfo.name)
        if name.endswith('.log'):
            return None
        if name.startswith(self.database_name):
            return None
        return tarinfo

    def restore_backup(self, backup_file, restore_type="full", target_dir="."):
        """Restaurar desde respaldo"""
        backup_path = Path(backup_file)
        if not backup_path.exists():
            raise FileNotFoundError(f"Archivo de respaldo no encontrado: {backup_file}")

        logger.info(f"🔄 Restaurando desde: {backup_file}")

        with tarfile.open(backup_file, "r:gz") as tar:
            members = tar.getmembers()
            if restore_type == "data":
                members = [m for m in members if m.name.startswith("data")]
            elif restore_type == "config":
                members = [m for m in members if m.name.startswith("config")]
            tar.extractall(target_dir, members=members, filter="data")

        logger.info("✅ Restauración completada")

    def cleanup_old_backups(self, retention_days=7):
        """Limpiar respaldos antiguos"""
        cutoff_date = datetime.now() - timedelta(days=retention_days)

        for backup_file in self.backup_dir.glob("*.tar.gz"):
            file_date = datetime.fromtimestamp(backup_file.stat().st_mtime)
            if file_date < cutoff_date:
                backup_file.unlink()
                logger.info(f"🗑️  Respaldo eliminado: {backup_file}")

    def list_backups(self):
        """Listar respaldos disponibles"""
        backups = []
        for backup_file in sorted(self.backup_dir.glob("*.tar.gz")):
            stat = backup_file.stat()
            backups.append({
                "file": backup_file.name,
                "size": stat.st_size,
                "date": datetime.fromtimestamp(stat.st_mtime)
            })
        return backups

def main():
    parser = argparse.ArgumentParser(description="Gestor de respaldos")
    parser.add_argument("action", choices=["create", "restore", "list", "cleanup"])
    parser.add_argument("--type", default="full", choices=["full", "data", "config"])
    parser.add_argument("--file", help="Archivo de respaldo para restaurar")
    parser.add_argument("--backup-dir", default="./backups")
    parser.add_argument("--retention", type=int, default=7, help="Días de retención")

    args = parser.parse_args()

    manager = BackupManager.from_config(args.backup_dir)

    if args.action == "create":
        manager.create_backup(args.type)
    elif args.action == "restore":
        if not args.file:
            logger.error("❌ Especifique --file para restaurar")
            return
        manager.restore_backup(args.file, args.type)
    elif args.action == "list":
        backups = manager.list_backups()
        for backup in backups:
            logger.info(f"{backup['file']} - {backup['size']} bytes - {backup['date']}")
    elif args.action == "cleanup":
        manager.cleanup_old_backups(args.retention)

if __name__ == "__main__":
    main()
