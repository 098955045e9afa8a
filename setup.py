from setuptools import setup, find_packages

setup(
    name="patchstream",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "patchstream=patchstream.cli:main",
        ],
    },
    description="Incrementally build UI trees from streamed JSONL patch output.",
)
