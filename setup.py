from setuptools import setup, find_packages

setup(
    name="trade-overlay",
    version="0.1.0",
    packages=find_packages(include=["overlay", "overlay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.2",
    ],
    extras_require={
        "test": ["pytest>=8.0"],
    },
)
