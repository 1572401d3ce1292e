from setuptools import setup, find_packages

setup(
    name="tinvest-rebalancer",
    version="1.0.0",
    author="T-Invest Rebalancer Team",
    description="Target-allocation rebalancer and order sequencer for T-Invest brokerage accounts",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={
        "app_config": ["py.typed"],
        "broker_connector_base": ["py.typed"],
        "rebalance_calculator": ["py.typed"],
        "tinvest_connector": ["py.typed"],
    },
    install_requires=[
        "pydantic==2.11.7",
        "aiohttp==3.12.15",
        "PyYAML==6.0.2",
        "APScheduler==3.11.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "tinvest-rebalancer=balancer_service.main:main",
        ],
    },
    python_requires=">=3.11",
)
