from setuptools import setup, find_packages

setup(
    name="asset-custody",
    version="0.1.0",
    description="Multi-party asset custody: proposal approvals, custody ledger and transaction bridge",
    python_requires=">=3.10",
    packages=find_packages(include=["custody", "custody.*"]),
    install_requires=["pyyaml>=6.0.0", "fastapi>=0.110.0", "uvicorn>=0.23.0"],
    extras_require={
        "dev": ["pytest>=7.4.0", "httpx>=0.24.0"],
    },
    entry_points={"console_scripts": ["custody=custody.cli:main"]},
    keywords=["custody", "multisig", "ledger", "stellar", "soroban"],
    license="Apache-2.0",
)
