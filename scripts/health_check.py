import argparse
import sys

import requests
from loguru import logger

def check_api_health(base_url):
    """Verificar salud de la API"""
    try:
        response = requests.get(f"{base_url}/api/health", timeout=5)
        if response.status_code == 200:
            data = response.json()
            if data.get("status") == "healthy":
                logger.info(f"✅ API saludable - oráculo: {data.get('oracle')}")
                return True
            else:
                logger.error("❌ API reporta problemas")
                return False
        else:
            logger.error(f"❌ API responde con código: {response.status_code}")
            return False
    except requests.RequestException as e:
        logger.error(f"❌ Error conectando con API: {e}")
        return False

def check_alerts(base_url, condominio_id):
    """Verificar que el canal de alertas responde"""
    try:
        response = requests.get(
            f"{base_url}/api/alerts/active", params={"condominio_id": condominio_id}, timeout=5
        )
        if response.status_code == 200:
            total = response.json().get("total", 0)
            if total:
                logger.warning(f"🚨 {total} alerta(s) activa(s) en {condominio_id}")
            else:
                logger.info(f"✅ Sin alertas activas en {condominio_id}")
            return True
        else:
            logger.error(f"❌ Error consultando alertas: {response.status_code}")
            return False
    except requests.RequestException as e:
        logger.error(f"❌ Error consultando alertas: {e}")
        return False

def main():
    """Función principal de health check"""
    parser = argparse.ArgumentParser(description="Verificación de salud")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--condominio", help="Condominio para revisar alertas activas")
    args = parser.parse_args()

    logger.info("🔍 Iniciando verificación de salud del sistema...")

    health_checks = [("API", lambda: check_api_health(args.url))]
    if args.condominio:
        health_checks.append(("Alertas", lambda: check_alerts(args.url, args.condominio)))

    failed_checks = []

    for name, check_func in health_checks:
        logger.info(f"Verificando {name}...")
        if not check_func():
            failed_checks.append(name)

    if failed_checks:
        logger.error(f"❌ Fallos en: {', '.join(failed_checks)}")
        sys.exit(1)
    else:
        logger.info("✅ Todos los sistemas funcionando correctamente")
        sys.exit(0)

if __name__ == "__main__":
    main()
