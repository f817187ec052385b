from setuptools import find_packages, setup

setup(
    name="buildkite_exporter",
    version="0.1.0",
    packages=[p for p in find_packages() if "tests" not in p],
    python_requires=">=3.9",
    install_requires=[
        "aiohttp>=3.8",
        "json-log-formatter>=0.5",
        "opentelemetry-api>=1.20",
        "opentelemetry-sdk>=1.20",
        "opentelemetry-exporter-otlp-proto-grpc>=1.20",
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "tenacity>=8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "yarl>=1.8",
        ],
    },
    entry_points={
        "console_scripts": [
            "start-buildkite-exporter=buildkite_exporter.entrypoints.start_exporter:entrypoint",
        ],
    },
)
