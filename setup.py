# setup.py
from setuptools import setup, find_packages

setup(
    name="twamm",
    version="0.1.0",
    packages=find_packages(include=["twamm", "twamm.*"]),
    python_requires=">=3.9",
    install_requires=[
        "msgpack",             # state snapshots
        "prometheus_client",   # metrics
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)
