import unittest
import asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from condoguard.core.classifier import EscalationClassifier
from condoguard.core.errors import ClassificationError, OperationTimeout
from condoguard.services.oracle_service import HttpClassificationOracle, KeywordOracle, build_oracle

class TestKeywordOracle(unittest.IsolatedAsyncioTestCase):
    """Tests para el oráculo local de bitácora"""

    async def asyncSetUp(self):
        self.classifier = EscalationClassifier(KeywordOracle())

    async def test_routine_report_needs_no_action(self):
        for report in ("routine patrol completed, nothing to report",
                       "Rondín de rutina sin novedad",
                       "Ingresó proveedor de gas a las 10:00"):
            with self.subTest(report=report):
                suggestion = await self.classifier.triage_report(report)
                self.assertEqual(suggestion.suggested_action, "none")

    async def test_problem_report_creates_petition(self):
        suggestion = await self.classifier.triage_report("water leak detected in parking garage")

        self.assertEqual(suggestion.suggested_action, "create_petition")
        self.assertTrue(suggestion.petition_title)
        self.assertLessEqual(len(suggestion.petition_title.split()), 10)
        self.assertIn("water leak", suggestion.petition_description)

    async def test_spanish_keywords(self):
        suggestion = await self.classifier.triage_report("Luz rota en el pasillo del edificio B")
        self.assertEqual(suggestion.suggested_action, "create_petition")
        self.assertEqual(suggestion.petition_title, "Luz rota en el pasillo del edificio B")

    async def test_other_tasks_unavailable(self):
        with self.assertRaises(ClassificationError):
            await self.classifier.audit_payroll("junio", [])

class TestHttpClassificationOracle(unittest.IsolatedAsyncioTestCase):
    """Tests para el oráculo HTTP contra un servidor local"""

    async def asyncSetUp(self):
        self.requests = []

        async def analyze_binnacle(request):
            self.requests.append((request.path, await request.json(), request.headers.get("Authorization")))
            return web.json_response({"suggestedAction": "none"})

        async def analyze_payroll(request):
            return web.Response(status=503, text="sin servicio")

        async def extract_name(request):
            await asyncio.sleep(1)
            return web.json_response({"fullName": ""})

        app = web.Application()
        app.router.add_post("/oracle/analyze_binnacle", analyze_binnacle)
        app.router.add_post("/oracle/analyze_payroll", analyze_payroll)
        app.router.add_post("/oracle/extract_name", extract_name)

        self.server = TestServer(app)
        await self.server.start_server()
        self.oracle = HttpClassificationOracle(str(self.server.make_url("/oracle")), api_key="secreto", timeout=0.2)

    async def asyncTearDown(self):
        await self.oracle.close()
        await self.server.close()

    async def test_posts_task_payload(self):
        classifier = EscalationClassifier(self.oracle)
        suggestion = await classifier.triage_report("todo en orden")

        self.assertEqual(suggestion.suggested_action, "none")
        self.assertEqual(self.requests, [("/oracle/analyze_binnacle", {"report": "todo en orden"}, "Bearer secreto")])

    async def test_error_status(self):
        with self.assertRaises(ClassificationError):
            await self.oracle.invoke("analyze_payroll", {})

    async def test_timeout(self):
        with self.assertRaises(OperationTimeout):
            await self.oracle.invoke("extract_name", {"photoDataUri": "data:image/jpeg;base64,AAAA"})

class TestBuildOracle(unittest.TestCase):
    """Tests para la selección de proveedor"""

    def test_default_keyword(self):
        self.assertIsInstance(build_oracle({}), KeywordOracle)

    def test_http_provider(self):
        oracle = build_oracle({
            "oracle": {"provider": "http", "endpoint": "http://oraculo:9000/", "api_key": ""},
            "timeouts": {"oracle": 12.0},
        })
        self.assertIsInstance(oracle, HttpClassificationOracle)
        self.assertEqual(oracle.endpoint, "http://oraculo:9000")
        self.assertEqual(oracle.timeout, 12.0)

    def test_invalid_provider(self):
        with self.assertRaises(ValueError):
            build_oracle({"oracle": {"provider": "http", "endpoint": ""}})
        with self.assertRaises(ValueError):
            build_oracle({"oracle": {"provider": "magia"}})

if __name__ == '__main__':
    unittest.main()
