from setuptools import setup, find_packages

# Core requirements - always installed
REQUIRED = [
    "pydantic>=2.0.0,<3.0.0",
    "numpy>=1.26.0",

    # Langchain
    "langchain-core>=0.3.19",
    "langchain-openai>=0.3.19",
    "langchain-text-splitters>=0.3.0",

    # LLMs
    "openai>=1.0.0",
]

# Optional dependencies
EXTRAS = {
    "test": [
        "pytest>=8.0.0",
        "pytest-asyncio>=0.23.0",
    ],
}

setup(
    name="loreweave",
    version="0.1.0",
    description="Context-aware retrieval and ranking engine for creative writing projects",
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=REQUIRED,
    extras_require=EXTRAS,
    entry_points={
        "console_scripts": [
            "loreweave=loreweave.cli:main"
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Indexing",
        "Operating System :: OS Independent",
    ],
    long_description_content_type="text/markdown",
    long_description=open("README.md").read(),
    license="MIT",
    keywords="retrieval rag writing langchain embeddings search",
)
