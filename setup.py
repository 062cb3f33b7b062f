from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="ctcore",
    version="0.1.0",
    author="ctcore contributors",
    description="Confidential transfer core - encrypted balances, range proofs and proof-context coordination",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["ctcore", "ctcore.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security :: Cryptography",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.11",
    install_requires=[
        "pycryptodome>=3.19.0",
        "pynacl>=1.5.0",
        "base58>=2.1.0",
        "pydantic>=2.5.0",
        "click>=8.1.0",
        "python-dotenv>=1.0.0",
        "colorlog>=6.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ctcore=ctcore.cli.main:cli",
        ],
    },
)
