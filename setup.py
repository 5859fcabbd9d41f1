#!/usr/bin/env python3
"""
Setup script for the vendor bridge

Installs the three services (ingestion gateway, command worker, feedback
notifier) and the shared library they are built on.
"""

from setuptools import setup, find_packages

setup(
    name="vendor-bridge",
    version="0.1.0",
    description="Asynchronous bridge between a vendor portal and a legacy ERP vendor master",
    package_dir={"": "backend"},
    packages=find_packages("backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        # 🚀 Web Framework
        "fastapi>=0.110.0",
        "uvicorn[standard]>=0.24.0",
        "httpx>=0.25.2",

        # 📋 Data Validation & Settings
        "pydantic>=2.5.0",
        "pydantic-settings>=2.7.0",
        "python-dotenv>=1.0.0",

        # 🗄️ Database & Caching
        "redis[hiredis]>=5.0.1",
        "asyncpg>=0.29.0",

        # 📬 Message Queue
        "confluent-kafka>=2.3.0",

        # 🔐 Authentication & Security
        "python-jose[cryptography]>=3.3.0",

        # 🔍 Validation
        "email-validator>=2.0.0",

        # 📝 Logging
        "python-json-logger>=2.0.7",

        # 📊 Observability
        "prometheus-client>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "cryptography>=41.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "vendor-bridge-gateway=ingestion_gateway.main:cli",
            "vendor-bridge-worker=command_worker.main:cli",
            "vendor-bridge-notifier=feedback_notifier.main:cli",
        ],
    },
)
