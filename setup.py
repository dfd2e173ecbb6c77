from setuptools import setup, find_packages


setup(
    name="carrepo",
    version="0.1",
    packages=find_packages(include=["carrepo", "carrepo.*"]),
    description="Verified record extraction from repository CAR exports (Merkle Search Tree).",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "multiformats>=0.3.1",
        "cbor2>=5.6.0,<6",
    ],
    entry_points={
        "console_scripts": [
            "carrepo=carrepo.cli:main",
        ]
    },
)
