from setuptools import setup, find_packages

setup(
    name="runtree",
    version="0.1.0",
    description="Run tree tracing for chains, LLM calls and tools",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="runtree",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-core>=2.0.0",
        "httpx>=0.24.0",
        "uuid6>=2024.1.12",  # For UUID7 generation
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
