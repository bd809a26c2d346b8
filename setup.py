"""vaultkeeper - Setup configuration"""

from setuptools import setup, find_packages

setup(
    name="vaultkeeper",
    version="1.0.0",
    description="Keyring orchestration controller for Ethereum wallets",
    author="Vaultkeeper Team",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "python-dotenv>=1.0.1",
        "web3>=6.18.0",
        "eth-account>=0.13.0",
        "pydantic>=2.6.1",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "prometheus-client>=0.20.0",
        "cryptography>=42.0.2",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    python_requires=">=3.11",
)
