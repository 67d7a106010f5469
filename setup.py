from setuptools import setup, find_packages

setup(
    name="hierarag",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "numpy",
        # Similarity graph expansion
        "networkx>=3.0",
        # Element extraction (QueryCursor API)
        "tree-sitter>=0.25",
        "tree-sitter-python",
        "tree-sitter-java",
        "tree-sitter-c",
        "tree-sitter-cpp",
        "tree-sitter-go",
        "tree-sitter-rust",
        "tree-sitter-ruby",
        "tree-sitter-php",
        "tree-sitter-c-sharp",
        "tqdm>=4.60",
    ],
    extras_require={
        # OpenAI embedding provider (install separately when needed)
        "semantic": [
            "openai>=1.0",
        ],
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "hierarag=hierarag.cli:main",
        ],
    },
    description="Hierarchical code indexing with hybrid vector, structural and graph retrieval.",
)
