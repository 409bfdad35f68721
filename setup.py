import os

from setuptools import setup, find_packages

setup(
    name="contact-harvester",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.15.0",
        "aio_pika>=9.0.0",
        "aiosqlite>=0.19.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=0.19.0",
        "requests>=2.26.0",
        "beautifulsoup4>=4.9.0",
        "playwright>=1.40.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
        ],
    },
    python_requires=">=3.10",
    author="Christo Strydom",
    author_email="christo.strydom@gmail.com",
    description="Queue-driven contact harvesting with a headless browser",
    long_description=open("README.md").read() if os.path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    entry_points={
        "console_scripts": [
            "harvester-worker=harvester.services.processing.main:run",
            "harvester-dashboard=harvester.services.dashboard.main:run",
        ],
    },
)
