# setup.py

from setuptools import setup, find_packages

setup(
    name="tradeledger",
    version="1.0.0",
    description="Position ledger for an automated trading bot",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        'aiosqlite>=0.19.0',
        'sqlalchemy[asyncio]>=2.0.0',
        'pandas>=2.0.0',
        'aiohttp>=3.9.0'
    ],
    extras_require={
        'test': [
            'pytest>=8.0.0',
            'pytest-asyncio>=0.25.0',
            'pytest-cov>=4.1.0'
        ],
        'dev': [
            'black>=24.0.0',
            'isort>=5.13.0',
            'flake8>=7.0.0'
        ]
    },
    entry_points={
        'console_scripts': [
            'tradeledger=tradeledger.cli:main'
        ]
    }
)
