from setuptools import find_packages, setup

setup(
    name="buildwatch",
    version="0.1.0",
    description="A debounced, glob-filtered directory watcher for driving incremental builds",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.8",
    install_requires=[
        "click",
        "toml",
        "pyyaml",
        "rich",
        "watchdog>=3.0"
    ],
    extras_require={
        "test": ["pytest"]
    },
    entry_points={
        "console_scripts": [
            "buildwatch=buildwatch.cli:main"
        ]
    },
)
