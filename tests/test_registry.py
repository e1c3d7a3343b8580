import unittest
import tempfile
import shutil
from datetime import datetime, timedelta, timezone
from condoguard.core.database import DatabaseManager
from condoguard.core.errors import NotFoundError, ValidationError
from condoguard.core.models import AccessType, PassRequest, ValidityMode
from condoguard.core.registry import CredentialRegistry, expiry_from_duration

T0 = datetime(2024, 6, 15, 12, 0, 0)

class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

class TestExpiryFromDuration(unittest.TestCase):
    """Tests para el cálculo de vencimiento"""

    def test_days(self):
        self.assertEqual(expiry_from_duration(T0, 3, "days"), T0 + timedelta(days=3))

    def test_months_clamp_end_of_month(self):
        """Test 31 de enero + 1 mes = último día de febrero"""
        start = datetime(2024, 1, 31, 8, 0)
        self.assertEqual(expiry_from_duration(start, 1, "months"), datetime(2024, 2, 29, 8, 0))

    def test_years(self):
        start = datetime(2024, 2, 29)
        self.assertEqual(expiry_from_duration(start, 1, "years"), datetime(2025, 2, 28))

    def test_invalid_values(self):
        with self.assertRaises(ValidationError):
            expiry_from_duration(T0, 0, "days")
        with self.assertRaises(ValidationError):
            expiry_from_duration(T0, 1, "weeks")

class TestCredentialRegistry(unittest.IsolatedAsyncioTestCase):
    """Tests para el registro de pases"""

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_manager = DatabaseManager(data_path=self.temp_dir, database_name="test.db")
        await self.db_manager.init_database()
        self.clock = FakeClock(T0)
        self.registry = CredentialRegistry(self.db_manager, clock=self.clock)

    async def asyncTearDown(self):
        shutil.rmtree(self.temp_dir)

    def _request(self, **overrides):
        data = dict(
            guest_name="Juan Pérez",
            access_type=AccessType.PEDESTRIAN,
            validity=ValidityMode.PERMANENT,
            condominio_id="c1",
            resident_id="r1",
        )
        data.update(overrides)
        return PassRequest(**data)

    async def test_issue_and_resolve_round_trip(self):
        """Test el pase emitido se resuelve con los mismos datos"""
        issued = await self.registry.issue(self._request(
            access_type=AccessType.VEHICULAR,
            validity=ValidityMode.BOUNDED,
            expires_at=T0 + timedelta(hours=1),
            license_plate="abc123",
        ))

        resolved = await self.registry.resolve(issued.token)
        self.assertEqual(resolved, issued)
        self.assertEqual(resolved.license_plate, "ABC123")
        self.assertEqual(resolved.expires_at, T0 + timedelta(hours=1))

    async def test_bounded_pass_expiry_window(self):
        """Test válido a T+30m, vencido a T+61m"""
        issued = await self.registry.issue(self._request(
            validity=ValidityMode.BOUNDED, expires_at=T0 + timedelta(hours=1)
        ))

        self.assertTrue(self.registry.is_valid(issued, T0 + timedelta(minutes=30)))
        self.assertFalse(self.registry.is_valid(issued, T0 + timedelta(hours=1)))
        self.assertFalse(self.registry.is_valid(issued, T0 + timedelta(minutes=61)))
        self.assertFalse(self.registry.is_valid(issued, T0 - timedelta(seconds=1)))

    async def test_aware_expiry_is_stored_as_local_time(self):
        """Test vencimiento con zona horaria se guarda en hora local"""
        aware = (T0 + timedelta(hours=1)).astimezone().astimezone(timezone.utc)
        issued = await self.registry.issue(self._request(validity=ValidityMode.BOUNDED, expires_at=aware))

        self.assertEqual(issued.expires_at, T0 + timedelta(hours=1))
        self.assertIsNone(issued.expires_at.tzinfo)
        self.assertTrue(self.registry.is_valid(issued, (T0 + timedelta(minutes=30)).astimezone()))
        self.assertFalse(self.registry.is_valid(issued, aware))

        with self.assertRaises(ValidationError):
            await self.registry.issue(self._request(
                validity=ValidityMode.BOUNDED, expires_at=(T0 - timedelta(hours=1)).astimezone()
            ))

    async def test_permanent_pass_never_expires(self):
        issued = await self.registry.issue(self._request())
        self.assertIsNone(issued.expires_at)
        self.assertTrue(self.registry.is_valid(issued, T0 + timedelta(days=3650)))

    async def test_issue_with_duration(self):
        issued = await self.registry.issue(self._request(
            validity=ValidityMode.BOUNDED, duration_value=2, duration_unit="days"
        ))
        self.assertEqual(issued.expires_at, T0 + timedelta(days=2))

    async def test_issue_validation(self):
        """Test datos inválidos al emitir"""
        with self.assertRaises(ValidationError):
            await self.registry.issue(self._request(access_type=AccessType.VEHICULAR))
        with self.assertRaises(ValidationError):
            await self.registry.issue(self._request(validity=ValidityMode.BOUNDED))
        with self.assertRaises(ValidationError):
            await self.registry.issue(self._request(validity=ValidityMode.BOUNDED, expires_at=T0))
        with self.assertRaises(ValidationError):
            await self.registry.issue(self._request(guest_name="  "))

    async def test_tokens_are_unique(self):
        tokens = {(await self.registry.issue(self._request())).token for _ in range(5)}
        self.assertEqual(len(tokens), 5)

    async def test_resolve_unknown_returns_none(self):
        self.assertIsNone(await self.registry.resolve("gp_inexistente"))

    async def test_revoke(self):
        """Test revocar y revocar de nuevo"""
        issued = await self.registry.issue(self._request())
        await self.registry.revoke(issued.token)

        self.assertIsNone(await self.registry.resolve(issued.token))
        with self.assertRaises(NotFoundError):
            await self.registry.revoke(issued.token)

    async def test_revoke_ownership(self):
        """Test solo el dueño o un administrador revoca"""
        issued = await self.registry.issue(self._request())

        with self.assertRaises(ValidationError):
            await self.registry.revoke(issued.token, requested_by="r2")
        await self.registry.revoke(issued.token, requested_by="r2", is_admin=True)
        self.assertIsNone(await self.registry.resolve(issued.token))

    async def test_list_passes_newest_first(self):
        first = await self.registry.issue(self._request())
        self.clock.now = T0 + timedelta(minutes=5)
        second = await self.registry.issue(self._request(resident_id="r2"))

        passes = await self.registry.list_passes("c1")
        self.assertEqual([p.token for p in passes], [second.token, first.token])

        passes = await self.registry.list_passes("c1", resident_id="r1")
        self.assertEqual([p.token for p in passes], [first.token])

if __name__ == '__main__':
    unittest.main()
