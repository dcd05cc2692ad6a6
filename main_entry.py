import sys
import os
import asyncio
import logging
import warnings

# 1. Make the project root importable when run as a script
current_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, current_dir)

# 2. CONFIGURE BOOT LOGGING
# Set up before importing anything else to catch import errors
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)s: %(message)s',
    datefmt='%H:%M:%S'
)

boot_logger = logging.getLogger("BOOT")

# 3. ENVIRONMENT
warnings.filterwarnings("ignore", category=DeprecationWarning)

# 4. IMPORT ENGINE (With Error Trapping)
try:
    from radar.main import main as engine_main
except ImportError as e:
    boot_logger.critical(f"❌ IMPORT ERROR: {e}")
    boot_logger.critical("---------------------------------------------------")
    boot_logger.critical("CHECK INSTALLATION:")
    boot_logger.critical(f"1. Root path: {current_dir}")
    boot_logger.critical("2. Does the 'radar' folder exist next to this file?")
    boot_logger.critical("3. Are the dependencies installed? (pip install -e .)")
    boot_logger.critical("---------------------------------------------------")
    raise SystemExit(1)


def run():
    try:
        boot_logger.info("⚡ Initializing Rebound Radar...")
        asyncio.run(engine_main())
    except KeyboardInterrupt:
        boot_logger.info("👋 Manual Shutdown Received. Goodbye.")
        raise SystemExit(0)
    except Exception as e:
        boot_logger.critical(f"💀 CRITICAL RUNTIME ERROR: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    run()
