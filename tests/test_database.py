import unittest
import os
import tempfile
import shutil
from condoguard.core.database import DatabaseManager
from condoguard.core.errors import ValidationError

class TestDatabaseManager(unittest.IsolatedAsyncioTestCase):
    """Tests para el gestor de base de datos"""

    async def asyncSetUp(self):
        """Configurar test"""
        self.temp_dir = tempfile.mkdtemp()
        self.db_manager = DatabaseManager(data_path=self.temp_dir, database_name="test.db")
        await self.db_manager.init_database()

    async def asyncTearDown(self):
        """Limpiar test"""
        shutil.rmtree(self.temp_dir)

    def _alert(self, alert_id, guard_id="g1", created_at="2024-06-15T10:00:00"):
        return {
            "id": alert_id,
            "guard_id": guard_id,
            "guard_name": "Guardia",
            "condominio_id": "c1",
            "created_at": created_at,
            "cleared": 0,
            "cleared_at": None,
            "cleared_by": None,
        }

    def test_get_db_path(self):
        """Test obtener ruta de base de datos"""
        expected_path = os.path.join(self.temp_dir, "test.db")
        self.assertEqual(self.db_manager.get_db_path(), expected_path)

    async def test_init_database(self):
        """Test inicialización idempotente"""
        await self.db_manager.init_database()
        self.assertTrue(os.path.exists(self.db_manager.get_db_path()))

    async def test_raise_replaces_active_pointer(self):
        """Test una alerta nueva del mismo guardia reemplaza la activa"""
        superseded = await self.db_manager.raise_panic_alert(self._alert("a1"))
        self.assertIsNone(superseded)

        superseded = await self.db_manager.raise_panic_alert(self._alert("a2", created_at="2024-06-15T10:05:00"))
        self.assertEqual(superseded, "a1")

        active = await self.db_manager.get_active_alert("g1", "c1")
        self.assertEqual(active["id"], "a2")

        history = await self.db_manager.list_alert_history("c1")
        self.assertEqual([r["id"] for r in history], ["a1", "a2"])

    async def test_clear_only_once(self):
        """Test atender una alerta solo actualiza una vez"""
        await self.db_manager.raise_panic_alert(self._alert("a1"))

        first = await self.db_manager.clear_panic_alert("a1", "2024-06-15T10:01:00", "admin")
        second = await self.db_manager.clear_panic_alert("a1", "2024-06-15T10:02:00", "admin")

        self.assertEqual(first, 1)
        self.assertEqual(second, 0)
        self.assertIsNone(await self.db_manager.get_active_alert("g1", "c1"))

    async def test_attach_petition_once(self):
        """Test vincular petición solo si la entrada no tiene una"""
        await self.db_manager.insert_bitacora_entry({
            "id": "e1",
            "condominio_id": "c1",
            "author_id": "g1",
            "author_name": "",
            "text": "Fuga de agua",
            "entry_type": "Manual",
            "category": None,
            "created_at": "2024-06-15T10:00:00",
            "petition_id": None,
        })

        self.assertTrue(await self.db_manager.attach_petition("e1", "p1"))
        self.assertFalse(await self.db_manager.attach_petition("e1", "p2"))

        entry = await self.db_manager.get_bitacora_entry("e1")
        self.assertEqual(entry["petition_id"], "p1")

    async def test_export_records_by_date(self):
        """Test exportación filtrada por día"""
        await self.db_manager.raise_panic_alert(self._alert("a1", created_at="2024-06-15T10:00:00"))
        await self.db_manager.raise_panic_alert(self._alert("a2", guard_id="g2", created_at="2024-06-16T09:00:00"))

        records = await self.db_manager.export_records("panic_alerts", "c1", "2024-06-16")
        self.assertEqual([r["id"] for r in records], ["a2"])

    async def test_export_unknown_table(self):
        """Test tabla no exportable"""
        with self.assertRaises(ValidationError):
            await self.db_manager.export_records("sqlite_master", "c1")

if __name__ == '__main__':
    unittest.main()
