import asyncio

import hypercorn.asyncio
from hypercorn.config import Config

from intelliform.main import create_app
from intelliform.utils.settings import AppSettings

"""
IntelliForm service runner

"""

settings = AppSettings.from_env()
app = create_app(settings)


if __name__ == "__main__":
    print(f"🚀 Starting IntelliForm...")
    print(f"📊 Service address: http://localhost:{settings.app_port}")
    print(f"📚 API docs: http://localhost:{settings.app_port}/docs")
    print(f"🔍 Health check: http://localhost:{settings.app_port}/health")
    print("Press Ctrl+C to stop")

    # Configure and run with hypercorn
    config = Config()
    config.bind = [f"{settings.app_host}:{settings.app_port}"]
    config.application_path = "main:app"

    config.use_reloader = settings.app_reload
    config.loglevel = settings.log_level.upper()
    config.workers = 1

    config.worker_class = "asyncio"
    config.accesslog = "-"
    config.errorlog = "-"

    # Run with hypercorn
    asyncio.run(hypercorn.asyncio.serve(app, config))
