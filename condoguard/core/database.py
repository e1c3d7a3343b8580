import aiosqlite
import os
from typing import List, Dict, Optional, Any, Sequence
from loguru import logger

from condoguard.core.errors import StoreError, ValidationError

# Columna de tiempo por tabla exportable
EXPORTABLE_TABLES = {
    "guest_passes": "created_at",
    "gate_registrations": "entry_timestamp",
    "panic_alerts": "created_at",
    "bitacora_entries": "created_at",
    "petitions": "created_at",
}


class DatabaseManager:
    """Gestor de base de datos SQLite para pases, registros de caseta, alertas y bitácora"""

    def __init__(self, data_path: str = "./data", database_name: str = "condoguard.db",
                 busy_timeout: float = 5.0):
        self.data_path = data_path
        self.database_name = database_name
        self.busy_timeout = busy_timeout
        os.makedirs(data_path, exist_ok=True)

    def get_db_path(self) -> str:
        """Obtener ruta de la base de datos"""
        return os.path.join(self.data_path, self.database_name)

    def _connect(self):
        return aiosqlite.connect(self.get_db_path(), timeout=self.busy_timeout)

    async def init_database(self):
        """Inicializar esquema"""
        try:
            async with self._connect() as db:
                # WAL para lecturas concurrentes mientras la caseta escribe
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS guest_passes (
                        token TEXT PRIMARY KEY,
                        guest_name TEXT NOT NULL,
                        access_type TEXT NOT NULL,
                        visitor_type TEXT NOT NULL,
                        validity TEXT NOT NULL,
                        condominio_id TEXT NOT NULL,
                        resident_id TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        expires_at TEXT,
                        resident_name TEXT,
                        address_id TEXT,
                        address TEXT,
                        license_plate TEXT,
                        vehicle_type TEXT,
                        vehicle_brand TEXT,
                        vehicle_color TEXT
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS gate_registrations (
                        id TEXT PRIMARY KEY,
                        access_type TEXT NOT NULL,
                        condominio_id TEXT NOT NULL,
                        entry_timestamp TEXT NOT NULL,
                        outcome TEXT NOT NULL,
                        deny_reason TEXT,
                        pass_token TEXT,
                        full_name TEXT,
                        visitor_type TEXT,
                        address TEXT,
                        license_plate TEXT,
                        vehicle_type TEXT,
                        vehicle_brand TEXT,
                        vehicle_color TEXT
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS panic_alerts (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        guard_id TEXT NOT NULL,
                        guard_name TEXT,
                        condominio_id TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        cleared INTEGER NOT NULL DEFAULT 0,
                        cleared_at TEXT,
                        cleared_by TEXT
                    )
                """)

                # Alerta visible por (guardia, condominio)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS active_alerts (
                        guard_id TEXT NOT NULL,
                        condominio_id TEXT NOT NULL,
                        alert_id TEXT NOT NULL,
                        PRIMARY KEY (guard_id, condominio_id)
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS bitacora_entries (
                        id TEXT PRIMARY KEY,
                        condominio_id TEXT NOT NULL,
                        author_id TEXT NOT NULL,
                        author_name TEXT,
                        text TEXT NOT NULL,
                        entry_type TEXT NOT NULL,
                        category TEXT,
                        created_at TEXT NOT NULL,
                        petition_id TEXT
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS petitions (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL,
                        condominio_id TEXT NOT NULL,
                        creator_id TEXT NOT NULL,
                        creator_name TEXT,
                        status TEXT NOT NULL,
                        category TEXT,
                        created_at TEXT NOT NULL
                    )
                """)

                await db.execute("CREATE INDEX IF NOT EXISTS idx_guest_passes_condominio ON guest_passes(condominio_id)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_gate_registrations_condominio ON gate_registrations(condominio_id, entry_timestamp)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_panic_alerts_condominio ON panic_alerts(condominio_id, created_at)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_bitacora_condominio ON bitacora_entries(condominio_id, created_at)")

                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"❌ Error inicializando base de datos: {e}")
            raise StoreError(f"No se pudo inicializar la base de datos: {e}") from e

    # ------------------------------------------------------------------
    # Primitivas
    # ------------------------------------------------------------------
    async def _insert(self, table: str, record: Dict[str, Any]):
        columns = ", ".join(record.keys())
        placeholders = ", ".join("?" for _ in record)
        query = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        await self._execute(query, tuple(record.values()))

    async def _execute(self, query: str, params: Sequence = ()) -> int:
        try:
            async with self._connect() as db:
                cursor = await db.execute(query, params)
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as e:
            logger.error(f"Error en base de datos: {e}")
            raise StoreError(str(e)) from e

    async def _fetch_all(self, query: str, params: Sequence = ()) -> List[Dict]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(query, params) as cursor:
                    rows = await cursor.fetchall()
                    return [dict(row) for row in rows]
        except aiosqlite.Error as e:
            logger.error(f"Error consultando base de datos: {e}")
            raise StoreError(str(e)) from e

    async def _fetch_one(self, query: str, params: Sequence = ()) -> Optional[Dict]:
        rows = await self._fetch_all(query, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Pases de invitado
    # ------------------------------------------------------------------
    async def insert_guest_pass(self, record: Dict):
        await self._insert("guest_passes", record)

    async def get_guest_pass(self, token: str) -> Optional[Dict]:
        return await self._fetch_one("SELECT * FROM guest_passes WHERE token = ?", (token,))

    async def delete_guest_pass(self, token: str) -> bool:
        return await self._execute("DELETE FROM guest_passes WHERE token = ?", (token,)) > 0

    async def list_guest_passes(self, condominio_id: str, resident_id: str = None) -> List[Dict]:
        query = "SELECT * FROM guest_passes WHERE condominio_id = ?"
        params = [condominio_id]
        if resident_id:
            query += " AND resident_id = ?"
            params.append(resident_id)
        query += " ORDER BY created_at DESC"
        return await self._fetch_all(query, params)

    # ------------------------------------------------------------------
    # Registros de caseta
    # ------------------------------------------------------------------
    async def insert_gate_registration(self, record: Dict):
        await self._insert("gate_registrations", record)

    async def list_gate_registrations(self, condominio_id: str, access_type: str = None) -> List[Dict]:
        query = "SELECT * FROM gate_registrations WHERE condominio_id = ?"
        params = [condominio_id]
        if access_type:
            query += " AND access_type = ?"
            params.append(access_type)
        query += " ORDER BY entry_timestamp DESC"
        return await self._fetch_all(query, params)

    # ------------------------------------------------------------------
    # Alertas de pánico
    # ------------------------------------------------------------------
    async def raise_panic_alert(self, record: Dict) -> Optional[str]:
        """Insertar alerta y marcarla como activa del guardia.

        Devuelve el id de la alerta activa que queda reemplazada, si existía.
        """
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                columns = ", ".join(record.keys())
                placeholders = ", ".join("?" for _ in record)
                await db.execute(
                    f"INSERT INTO panic_alerts ({columns}) VALUES ({placeholders})",
                    tuple(record.values())
                )
                async with db.execute(
                    "SELECT alert_id FROM active_alerts WHERE guard_id = ? AND condominio_id = ?",
                    (record["guard_id"], record["condominio_id"])
                ) as cursor:
                    row = await cursor.fetchone()
                await db.execute("""
                    INSERT INTO active_alerts (guard_id, condominio_id, alert_id) VALUES (?, ?, ?)
                    ON CONFLICT(guard_id, condominio_id) DO UPDATE SET alert_id = excluded.alert_id
                """, (record["guard_id"], record["condominio_id"], record["id"]))
                await db.commit()
                return row[0] if row else None
        except aiosqlite.Error as e:
            logger.error(f"Error registrando alerta de pánico: {e}")
            raise StoreError(str(e)) from e

    async def get_panic_alert(self, alert_id: str) -> Optional[Dict]:
        return await self._fetch_one("SELECT * FROM panic_alerts WHERE id = ?", (alert_id,))

    async def clear_panic_alert(self, alert_id: str, cleared_at: str, cleared_by: str = None) -> int:
        """Marcar alerta como atendida. Devuelve 0 si ya estaba atendida o no existe."""
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                cursor = await db.execute("""
                    UPDATE panic_alerts SET cleared = 1, cleared_at = ?, cleared_by = ?
                    WHERE id = ? AND cleared = 0
                """, (cleared_at, cleared_by, alert_id))
                updated = cursor.rowcount
                if updated:
                    await db.execute("DELETE FROM active_alerts WHERE alert_id = ?", (alert_id,))
                await db.commit()
                return updated
        except aiosqlite.Error as e:
            logger.error(f"Error atendiendo alerta de pánico: {e}")
            raise StoreError(str(e)) from e

    async def get_active_alert(self, guard_id: str, condominio_id: str) -> Optional[Dict]:
        return await self._fetch_one("""
            SELECT p.* FROM panic_alerts p
            JOIN active_alerts a ON a.alert_id = p.id
            WHERE a.guard_id = ? AND a.condominio_id = ?
        """, (guard_id, condominio_id))

    async def list_active_alerts(self, condominio_id: str) -> List[Dict]:
        return await self._fetch_all("""
            SELECT p.* FROM panic_alerts p
            JOIN active_alerts a ON a.alert_id = p.id
            WHERE p.condominio_id = ? AND p.cleared = 0
            ORDER BY p.created_at, p.seq
        """, (condominio_id,))

    async def list_alert_history(self, condominio_id: str) -> List[Dict]:
        return await self._fetch_all(
            "SELECT * FROM panic_alerts WHERE condominio_id = ? ORDER BY created_at, seq",
            (condominio_id,)
        )

    # ------------------------------------------------------------------
    # Bitácora y peticiones
    # ------------------------------------------------------------------
    async def insert_bitacora_entry(self, record: Dict):
        await self._insert("bitacora_entries", record)

    async def get_bitacora_entry(self, entry_id: str) -> Optional[Dict]:
        return await self._fetch_one("SELECT * FROM bitacora_entries WHERE id = ?", (entry_id,))

    async def list_bitacora_entries(self, condominio_id: str) -> List[Dict]:
        return await self._fetch_all(
            "SELECT * FROM bitacora_entries WHERE condominio_id = ? ORDER BY created_at DESC",
            (condominio_id,)
        )

    async def attach_petition(self, entry_id: str, petition_id: str) -> bool:
        """Vincular petición a la entrada solo si aún no tiene una"""
        updated = await self._execute(
            "UPDATE bitacora_entries SET petition_id = ? WHERE id = ? AND petition_id IS NULL",
            (petition_id, entry_id)
        )
        return updated > 0

    async def insert_petition(self, record: Dict):
        await self._insert("petitions", record)

    async def get_petition(self, petition_id: str) -> Optional[Dict]:
        return await self._fetch_one("SELECT * FROM petitions WHERE id = ?", (petition_id,))

    async def list_petitions(self, condominio_id: str) -> List[Dict]:
        return await self._fetch_all(
            "SELECT * FROM petitions WHERE condominio_id = ? ORDER BY created_at DESC",
            (condominio_id,)
        )

    # ------------------------------------------------------------------
    # Exportación
    # ------------------------------------------------------------------
    async def export_records(self, table: str, condominio_id: str, date: str = None) -> List[Dict]:
        """Exportar registros de una tabla, opcionalmente de un día (YYYY-MM-DD)"""
        if table not in EXPORTABLE_TABLES:
            raise ValidationError(f"Tabla no exportable: {table}")

        time_column = EXPORTABLE_TABLES[table]
        query = f"SELECT * FROM {table} WHERE condominio_id = ?"
        params = [condominio_id]
        if date:
            query += f" AND substr({time_column}, 1, 10) = ?"
            params.append(date)
        query += f" ORDER BY {time_column}"
        return await self._fetch_all(query, params)
